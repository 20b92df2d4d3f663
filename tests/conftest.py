import os
import tempfile
from contextlib import contextmanager
from datetime import timedelta

_DB_DIR = tempfile.mkdtemp(prefix="cleannft-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'cleannft.db')}"
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["OUTBOX_PROCESSOR_ENABLED"] = "false"
os.environ["SESSION_CLEANUP_ENABLED"] = "false"
os.environ["IDEMPOTENCY_MODE"] = "best_effort"

import pytest
from fastapi.testclient import TestClient

from cleannft.db import Base, SessionLocal, engine, utcnow
from cleannft.main import app
from cleannft.models.auth_session import AuthSession
from cleannft.models.device import Device
from cleannft.models.nft_definition import NftDefinition
from cleannft.models.nft_mint import NftMint
from cleannft.models.point_rule import PointRule
from cleannft.models.recycling_station import RecyclingStation
from cleannft.models.user import User, UserRole
from cleannft.services.auth_service import hash_password, issue_token


PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session_scope():
    @contextmanager
    def _scope():
        db = SessionLocal(expire_on_commit=False)
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return _scope


@pytest.fixture
def make_user(session_scope):
    counter = {"n": 0}

    def _make(*, roles=("USER",), wallet_address=None, email=None):
        counter["n"] += 1
        with session_scope() as db:
            user = User(
                email=email or f"user{counter['n']}@example.com",
                password_hash=_PASSWORD_HASH,
                wallet_address=wallet_address or f"0x{counter['n']:040x}",
                is_active=True,
                created_at=utcnow(),
            )
            db.add(user)
            db.flush()
            for role in roles:
                db.add(UserRole(user_id=user.id, role_code=role))
            session = AuthSession(user_id=user.id, expires_at=utcnow() + timedelta(days=7), created_at=utcnow())
            db.add(session)
            db.flush()
            token = issue_token(user=user, roles=list(roles), session=session)
            return user.id, token

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(roles=("USER", "ADMIN"))


@pytest.fixture
def station_device(session_scope):
    with session_scope() as db:
        db.add(RecyclingStation(code="ST_001", name="Central", location="Main square", created_at=utcnow()))
        db.flush()
        device = Device(hw_id="DEV-001", station_code="ST_001", status="ACTIVE", created_at=utcnow())
        db.add(device)
        db.flush()
        return {"station_code": "ST_001", "device_hw_id": "DEV-001", "device_id": device.id}


@pytest.fixture
def add_rule(session_scope):
    def _add(code, expr_type, value, *, active_from=None, active_to=None):
        with session_scope() as db:
            db.add(
                PointRule(
                    code=code,
                    description=f"{code} rule",
                    points_expr={"type": expr_type, "value": value},
                    active_from=active_from or (utcnow() - timedelta(days=1)),
                    active_to=active_to,
                    created_at=utcnow(),
                )
            )

    return _add


@pytest.fixture
def standard_rules(add_rule):
    add_rule("PER_KG", "per_kg", 10, active_from=utcnow() - timedelta(days=2))
    add_rule("FIRST_DUMP_BONUS", "flat", 50)


@pytest.fixture
def nft_pool(session_scope):
    def _pool(code="TREE", count=1, start_token_id=1):
        with session_scope() as db:
            if not db.query(NftDefinition).filter(NftDefinition.code == code).first():
                db.add(
                    NftDefinition(
                        code=code,
                        name=f"{code} badge",
                        description="Awarded for recycling",
                        attributes={"tier": "bronze"},
                        supply_cap=100,
                        created_at=utcnow(),
                        updated_at=utcnow(),
                    )
                )
                db.flush()
            mints = [
                NftMint(
                    nft_def_code=code,
                    token_id=start_token_id + i,
                    contract="0xcontract",
                    network="polygon-amoy",
                    owner_address="0xtreasury",
                    status="MINTED",
                    minted_at=utcnow(),
                )
                for i in range(count)
            ]
            db.add_all(mints)
            db.flush()
            return [m.id for m in mints]

    return _pool
