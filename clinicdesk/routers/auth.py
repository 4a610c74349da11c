from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from clinicdesk.core.audit import log_audit
from clinicdesk.core.security import (
    create_access_token,
    get_current_active_user,
    get_password_hash,
    require_roles,
    verify_password,
)
from clinicdesk.database import get_db
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.user import User, UserRole

router = APIRouter(prefix="/api/auth", tags=["authentication"])


class UserLogin(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    role: UserRole
    user_id: int
    doctor_id: Optional[int] = None


class UserCreate(BaseModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    password: str
    full_name: str
    phone_number: Optional[str] = None
    role: UserRole = UserRole.NURSE
    doctor_id: Optional[int] = None


class UserResponse(BaseModel):
    id: int
    email: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: UserRole
    doctor_id: Optional[int] = None
    is_active: bool

    class Config:
        from_attributes = True


def _find_account(db: Session, username: str) -> Optional[User]:
    # Admins and doctors sign in with email, front-desk workers with a username
    if "@" in username:
        return db.query(User).filter(User.email == username).first()
    return db.query(User).filter(User.username == username).first()


@router.post("/login", response_model=Token)
async def login(user_data: UserLogin, request: Request, db: Session = Depends(get_db)):
    username = user_data.username.strip()
    if not username or not user_data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username/email and password cannot be empty",
        )

    user = _find_account(db, username)
    if not user or not user.is_active or not verify_password(user_data.password, user.hashed_password):
        if user:
            log_audit(db, user, "failed_login", "users", user.id, new_values={"reason": "invalid_credentials"}, request=request)
            db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login = datetime.now(timezone.utc)
    log_audit(db, user, "login", "users", user.id, new_values={"success": True}, request=request)
    db.commit()

    access_token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "role": user.role,
        "user_id": user.id,
        "doctor_id": user.doctor_id,
    }


@router.get("/me", response_model=UserResponse)
async def read_me(current_user: User = Depends(get_current_active_user)):
    return current_user


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    if not user_data.email and not user_data.username:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either email or username is required",
        )

    if user_data.email and db.query(User).filter(User.email == user_data.email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    if user_data.username and db.query(User).filter(User.username == user_data.username).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    if user_data.role == UserRole.DOCTOR:
        if user_data.doctor_id is None or not db.query(Doctor).filter(Doctor.id == user_data.doctor_id).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Doctor accounts must reference an existing doctor",
            )
    elif user_data.doctor_id is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only doctor accounts can be linked to a doctor",
        )

    db_user = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=get_password_hash(user_data.password),
        full_name=user_data.full_name,
        phone_number=user_data.phone_number,
        role=user_data.role,
        doctor_id=user_data.doctor_id,
    )
    db.add(db_user)
    db.flush()
    log_audit(
        db,
        current_user,
        "create_user",
        "users",
        db_user.id,
        new_values={"email": db_user.email, "username": db_user.username, "role": db_user.role},
        request=request,
    )
    db.commit()
    db.refresh(db_user)
    return db_user
