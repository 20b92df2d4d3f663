from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cleannft.db import get_db
from cleannft.deps.auth import CurrentUser, get_current_user
from cleannft.errors import NotFoundError
from cleannft.models.user import User
from cleannft.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, UserOut
from cleannft.services.auth_service import login_user, logout_session, register_user, serialize_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    return register_user(db, payload)


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    return login_user(db, payload)


@router.post("/logout")
def logout(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    if user.session_id is not None:
        logout_session(db, user.session_id)
    return {"loggedOut": True}


@router.get("/me", response_model=UserOut)
def me(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    row = db.query(User).filter(User.id == user.id).first()
    if not row:
        raise NotFoundError("User not found")
    return serialize_user(db, row)
