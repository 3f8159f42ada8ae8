from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import hash_password
from app.models.group import Group, users_groups
from app.models.institution import Institution
from app.models.user import User, UserRole
from app.routers.auth import AdminUser, StaffUser, MIN_PASSWORD_LENGTH, SUPPORTED_LANGUAGES
from app.routers.common import Page, Pagination, paginate, get_or_404

router = APIRouter()


# Schemas
class UserCreate(BaseModel):
    email: EmailStr
    password: str
    given_name: str = Field(min_length=1, max_length=100)
    family_name: str = Field("", max_length=100)
    role: UserRole
    institution_id: int | None = None
    language_preference: str = "es"
    is_active: bool = True


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = None
    given_name: str | None = Field(None, min_length=1, max_length=100)
    family_name: str | None = Field(None, max_length=100)
    role: UserRole | None = None
    institution_id: int | None = None
    language_preference: str | None = None
    is_active: bool | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    given_name: str
    family_name: str
    role: UserRole
    institution_id: int | None
    language_preference: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserGroupResponse(BaseModel):
    id: int
    name: str
    description: str | None

    class Config:
        from_attributes = True


def _validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )


def _validate_language(language: str) -> None:
    if language not in SUPPORTED_LANGUAGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Language must be one of: {', '.join(SUPPORTED_LANGUAGES)}",
        )


async def _validate_institution(db: AsyncSession, role: UserRole, institution_id: int | None) -> None:
    if institution_id is None:
        if role != UserRole.ADMIN:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Non-admin users must belong to an institution",
            )
        return
    if await db.get(Institution, institution_id) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Institution not found",
        )


async def _ensure_unique_email(db: AsyncSession, email: str, exclude_id: int | None = None) -> None:
    stmt = select(User.id).where(User.email == email)
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )


# Endpoints
@router.get("", response_model=Page[UserResponse])
async def list_users(
    current_user: StaffUser,
    role: UserRole | None = None,
    institution_id: int | None = None,
    search: str | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """
    Admins filter freely. Staff only see their own institution, and only
    students unless another role is asked for.
    """
    stmt = select(User).order_by(User.family_name, User.given_name, User.id)

    if current_user.role != UserRole.ADMIN:
        institution_id = current_user.institution_id
        role = role or UserRole.STUDENT
        stmt = stmt.where(User.institution_id == institution_id)
    elif institution_id is not None:
        stmt = stmt.where(User.institution_id == institution_id)

    if role is not None:
        stmt = stmt.where(User.role == role)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                User.email.ilike(pattern),
                User.given_name.ilike(pattern),
                User.family_name.ilike(pattern),
            )
        )

    items, total = await paginate(db, stmt, pagination)
    return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(data: UserCreate, _: AdminUser, db: AsyncSession = Depends(get_db)):
    _validate_password(data.password)
    _validate_language(data.language_preference)
    await _validate_institution(db, data.role, data.institution_id)
    await _ensure_unique_email(db, data.email)

    user = User(
        email=data.email,
        hashed_password=hash_password(data.password),
        given_name=data.given_name,
        family_name=data.family_name,
        role=data.role,
        institution_id=data.institution_id,
        language_preference=data.language_preference,
        is_active=data.is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, _: AdminUser, db: AsyncSession = Depends(get_db)):
    return await get_or_404(db, User, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    _: AdminUser,
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id)
    updates = data.model_dump(exclude_unset=True)

    if "email" in updates:
        await _ensure_unique_email(db, updates["email"], exclude_id=user_id)
    if "language_preference" in updates:
        _validate_language(updates["language_preference"])
    if "role" in updates or "institution_id" in updates:
        await _validate_institution(
            db,
            updates.get("role", user.role),
            updates.get("institution_id", user.institution_id),
        )

    password = updates.pop("password", None)
    if password is not None:
        _validate_password(password)
        user.hashed_password = hash_password(password)

    for field, value in updates.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, current_user: AdminUser, db: AsyncSession = Depends(get_db)):
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account",
        )
    user = await get_or_404(db, User, user_id)
    await db.delete(user)
    await db.commit()


@router.get("/{user_id}/groups", response_model=list[UserGroupResponse])
async def list_user_groups(user_id: int, _: AdminUser, db: AsyncSession = Depends(get_db)):
    await get_or_404(db, User, user_id)
    result = await db.execute(
        select(Group)
        .join(users_groups, users_groups.c.group_id == Group.id)
        .where(users_groups.c.user_id == user_id)
        .order_by(Group.name)
    )
    return result.scalars().all()
