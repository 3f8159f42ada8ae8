from datetime import datetime
from typing import Annotated
import logging

from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import (
    create_tokens,
    verify_token,
    verify_password,
    hash_password,
    generate_reset_token,
    hash_reset_token,
    reset_token_expiry,
)
from app.models.institution import Institution
from app.models.user import User, UserRole
from app.services.email import send_email, password_reset_email

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "es")
MIN_PASSWORD_LENGTH = 8


# Schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LanguageRequest(BaseModel):
    language: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class UserSummary(BaseModel):
    id: int
    email: str
    given_name: str
    family_name: str
    role: UserRole
    institution_id: int | None
    language_preference: str

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str


class LoginResponse(TokenResponse):
    user: UserSummary


class MeResponse(UserSummary):
    institution_name: str | None = None
    is_active: bool
    created_at: datetime


# Dependency to get current user
async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    token = auth_header.split(" ")[1]
    payload = verify_token(token, "access")
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user = await db.get(User, int(payload.sub))
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: UserRole):
    """Dependency factory: 403 unless the caller has one of ``roles``."""

    async def checker(current_user: CurrentUser) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return checker


AdminUser = Annotated[User, Depends(require_roles(UserRole.ADMIN))]
StaffUser = Annotated[User, Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER, UserRole.CLERK))]
StudentUser = Annotated[User, Depends(require_roles(UserRole.STUDENT))]


# Endpoints
@router.post("/login", response_model=LoginResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password."""
    result = await db.execute(select(User).where(User.email == data.email))
    user = result.scalar_one_or_none()

    if not user or not user.hashed_password or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not verify_password(data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("[Auth] Login user_id=%d role=%s", user.id, user.role.value)
    return LoginResponse(**create_tokens(user.id, user.role.value), user=UserSummary.model_validate(user))


@router.post("/refresh", response_model=TokenResponse)
async def refresh(data: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Refresh access token using refresh token."""
    payload = verify_token(data.refresh_token, "refresh")
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    user = await db.get(User, int(payload.sub))
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return create_tokens(user.id, user.role.value)


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: CurrentUser, db: AsyncSession = Depends(get_db)):
    """Get current user info."""
    institution = None
    if current_user.institution_id is not None:
        institution = await db.get(Institution, current_user.institution_id)
    return MeResponse(
        **UserSummary.model_validate(current_user).model_dump(),
        institution_name=institution.name if institution else None,
        is_active=current_user.is_active,
        created_at=current_user.created_at,
    )


@router.put("/language", response_model=UserSummary)
async def update_language(
    data: LanguageRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Set the caller's interface/output language."""
    if data.language not in SUPPORTED_LANGUAGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Language must be one of: {', '.join(SUPPORTED_LANGUAGES)}",
        )

    current_user.language_preference = data.language
    await db.commit()
    await db.refresh(current_user)
    return current_user


@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    """Email a reset link. The response is the same whether or not the account exists."""
    result = await db.execute(select(User).where(User.email == data.email))
    user = result.scalar_one_or_none()

    if user and user.is_active:
        raw_token, token_hash = generate_reset_token()
        user.reset_token_hash = token_hash
        user.reset_token_expires_at = reset_token_expiry()
        await db.commit()

        reset_url = f"{settings.frontend_url}/{user.language_preference}/reset-password?token={raw_token}"
        subject, body = password_reset_email(
            user.language_preference,
            user.given_name,
            reset_url,
            settings.password_reset_expire_minutes,
        )
        await send_email(user.email, subject, body)
    else:
        logger.info("[Auth] Password reset requested for unknown or inactive email")

    return {"message": "If the email exists, a reset link has been sent"}


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    """Set a new password with a single-use reset token."""
    if len(data.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )

    result = await db.execute(
        select(User).where(User.reset_token_hash == hash_reset_token(data.token))
    )
    user = result.scalar_one_or_none()

    if (
        not user
        or not user.reset_token_expires_at
        or user.reset_token_expires_at < datetime.utcnow()
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token",
        )

    user.hashed_password = hash_password(data.new_password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    await db.commit()

    logger.info("[Auth] Password reset for user_id=%d", user.id)
    return {"message": "Password has been reset"}
