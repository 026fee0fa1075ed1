import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from healthmate import auth
from healthmate.database import get_db
from healthmate.exceptions import ConflictError, ValidationError
from healthmate.models import User, utcnow
from healthmate.schemas import (
    AuthData,
    ChangePasswordRequest,
    Envelope,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    UserData,
    UserOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _checked_email(raw: str) -> str:
    email = auth.normalize_email(raw)
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValidationError("Please provide a valid email address")
    return email


def _ensure_email_free(db: Session, email: str, current_id: int | None = None) -> None:
    existing = db.query(User).filter(User.email == email).first()
    if existing and existing.id != current_id:
        raise ConflictError("User already exists with this email")


def _token_for(user: User) -> str:
    return auth.create_access_token({"sub": str(user.id)})


@router.post("/register", response_model=Envelope[AuthData], status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    email = _checked_email(body.email)
    _ensure_email_free(db, email)
    user = User(
        name=body.name.strip(),
        email=email,
        hashed_password=auth.get_password_hash(body.password),
        last_login=utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return Envelope(
        message="User registered successfully",
        data=AuthData(token=_token_for(user), user=UserOut.model_validate(user)),
    )


@router.post("/login", response_model=Envelope[AuthData])
def login(body: LoginRequest, db: Session = Depends(get_db)):
    user = auth.authenticate_user(db, body.email, body.password)
    user.last_login = utcnow()
    db.commit()
    db.refresh(user)
    return Envelope(
        message="Login successful",
        data=AuthData(token=_token_for(user), user=UserOut.model_validate(user)),
    )


@router.get("/profile", response_model=Envelope[UserData])
def get_profile(current_user: User = Depends(auth.get_current_user)):
    return Envelope(data=UserData(user=UserOut.model_validate(current_user)))


@router.put("/profile", response_model=Envelope[UserData])
def update_profile(
    body: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    if body.name is not None:
        current_user.name = body.name.strip()
    if body.email is not None:
        email = _checked_email(body.email)
        _ensure_email_free(db, email, current_user.id)
        current_user.email = email
    db.commit()
    db.refresh(current_user)
    return Envelope(message="Profile updated successfully", data=UserData(user=UserOut.model_validate(current_user)))


@router.put("/change-password", response_model=Envelope)
def change_password(
    body: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    if not auth.verify_password(body.current_password, current_user.hashed_password):
        raise ValidationError("Current password is incorrect")
    current_user.hashed_password = auth.get_password_hash(body.new_password)
    db.commit()
    return Envelope(message="Password changed successfully")


@router.post("/logout", response_model=Envelope)
def logout(current_user: User = Depends(auth.get_current_user)):
    # Tokens are stateless; the client drops its copy.
    logger.info("User %s logged out", current_user.id)
    return Envelope(message="Logged out successfully")
