import logging
from datetime import timedelta

import bcrypt
import jwt
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cleannft.config import settings
from cleannft.db import utcnow
from cleannft.errors import ConflictError, UnauthorizedError
from cleannft.models.auth_session import AuthSession
from cleannft.models.user import User, UserRole
from cleannft.schemas.auth import LoginRequest, RegisterRequest


logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_ROLE = "USER"
ADMIN_ROLE = "ADMIN"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def get_user_roles(db: Session, user_id) -> list[str]:
    rows = db.query(UserRole.role_code).filter(UserRole.user_id == user_id).order_by(UserRole.role_code.asc()).all()
    return [r[0] for r in rows]


def serialize_user(db: Session, user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "wallet_address": user.wallet_address,
        "is_active": user.is_active,
        "roles": get_user_roles(db, user.id),
        "created_at": user.created_at,
    }


def issue_token(*, user: User, roles: list[str], session: AuthSession) -> str:
    now = utcnow()
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "roles": roles,
        "sid": str(session.id),
        "iat": now,
        "exp": session.expires_at,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def _open_session(db: Session, user: User) -> AuthSession:
    now = utcnow()
    session = AuthSession(
        user_id=user.id,
        expires_at=now + timedelta(days=settings.jwt_expires_days),
        created_at=now,
    )
    db.add(session)
    db.flush()
    return session


def register_user(db: Session, payload: RegisterRequest, *, roles: list[str] | None = None):
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        display_name=payload.display_name,
        wallet_address=payload.wallet_address,
        is_active=True,
        created_at=utcnow(),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Email already registered")

    for role in roles or [DEFAULT_ROLE]:
        db.add(UserRole(user_id=user.id, role_code=role))
    db.flush()

    session = _open_session(db, user)
    role_codes = get_user_roles(db, user.id)
    token = issue_token(user=user, roles=role_codes, session=session)
    db.commit()
    db.refresh(user)

    logger.info("user registered", extra={"user_id": str(user.id)})
    return {"user": serialize_user(db, user), "token": token}


def login_user(db: Session, payload: LoginRequest):
    email = payload.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("Account is disabled")

    session = _open_session(db, user)
    token = issue_token(user=user, roles=get_user_roles(db, user.id), session=session)
    db.commit()

    logger.info("user logged in", extra={"user_id": str(user.id), "session_id": str(session.id)})
    return {"user": serialize_user(db, user), "token": token}


def logout_session(db: Session, session_id) -> bool:
    deleted = db.execute(delete(AuthSession).where(AuthSession.id == session_id)).rowcount
    db.commit()
    return bool(deleted)


def cleanup_expired_sessions(db: Session) -> int:
    deleted = db.execute(delete(AuthSession).where(AuthSession.expires_at < utcnow())).rowcount
    db.commit()
    logger.info("expired sessions removed", extra={"count": int(deleted or 0)})
    return int(deleted or 0)
