import uuid
from dataclasses import dataclass, field

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from cleannft.db import get_db, utcnow
from cleannft.errors import ForbiddenError, UnauthorizedError
from cleannft.models.auth_session import AuthSession
from cleannft.models.user import User
from cleannft.services.auth_service import ADMIN_ROLE, decode_token, get_user_roles


bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: uuid.UUID
    email: str
    session_id: uuid.UUID | None
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def _resolve_user(db: Session, token: str) -> CurrentUser:
    claims = decode_token(token)
    try:
        user_id = uuid.UUID(str(claims.get("sub")))
        session_id = uuid.UUID(str(claims["sid"])) if claims.get("sid") else None
    except ValueError:
        raise UnauthorizedError("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    if session_id is not None:
        session = db.query(AuthSession).filter(AuthSession.id == session_id).first()
        if not session or session.user_id != user.id or session.expires_at < utcnow():
            raise UnauthorizedError("Session expired")

    # Token roles are informational; the database is authoritative.
    return CurrentUser(id=user.id, email=user.email, session_id=session_id, roles=get_user_roles(db, user.id))


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")
    return _resolve_user(db, credentials.credentials)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser | None:
    if credentials is None or not credentials.credentials:
        return None
    return _resolve_user(db, credentials.credentials)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError("Admin role required")
    return user
