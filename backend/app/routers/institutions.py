from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.institution import Institution, SkillLevelSetting
from app.models.user import User, UserRole
from app.routers.auth import AdminUser, StaffUser
from app.routers.common import Page, Pagination, paginate, get_or_404, ensure_institution_access

router = APIRouter()


# Schemas
class InstitutionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    contact_email: EmailStr | None = None
    scoring_scale: int = Field(10, ge=1)
    is_active: bool = True


class InstitutionUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    contact_email: EmailStr | None = None
    scoring_scale: int | None = Field(None, ge=1)
    is_active: bool | None = None


class InstitutionResponse(BaseModel):
    id: int
    name: str
    description: str | None
    contact_email: str | None
    scoring_scale: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class InstitutionOption(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class LevelSettingItem(BaseModel):
    order: int = Field(ge=1)
    label: str = Field(min_length=1, max_length=100)
    description: str = ""
    lower_limit: float | None = None
    upper_limit: float | None = None


class LevelSettingResponse(LevelSettingItem):
    id: int

    class Config:
        from_attributes = True


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id: int | None = None) -> None:
    stmt = select(Institution.id).where(Institution.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Institution.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An institution with this name already exists",
        )


# Endpoints
@router.get("", response_model=Page[InstitutionResponse])
async def list_institutions(
    _: AdminUser,
    search: str | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Institution).order_by(Institution.name)
    if search:
        stmt = stmt.where(Institution.name.ilike(f"%{search}%"))
    items, total = await paginate(db, stmt, pagination)
    return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)


@router.get("/list", response_model=list[InstitutionOption])
async def list_institution_options(current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    """Compact id/name list for pickers; staff only see their own institution."""
    stmt = select(Institution).where(Institution.is_active.is_(True)).order_by(Institution.name)
    if current_user.role != UserRole.ADMIN:
        stmt = stmt.where(Institution.id == current_user.institution_id)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("", response_model=InstitutionResponse, status_code=status.HTTP_201_CREATED)
async def create_institution(data: InstitutionCreate, _: AdminUser, db: AsyncSession = Depends(get_db)):
    await _ensure_unique_name(db, data.name)
    institution = Institution(**data.model_dump())
    db.add(institution)
    await db.commit()
    await db.refresh(institution)
    return institution


@router.get("/{institution_id}", response_model=InstitutionResponse)
async def get_institution(institution_id: int, _: AdminUser, db: AsyncSession = Depends(get_db)):
    return await get_or_404(db, Institution, institution_id)


@router.put("/{institution_id}", response_model=InstitutionResponse)
async def update_institution(
    institution_id: int,
    data: InstitutionUpdate,
    _: AdminUser,
    db: AsyncSession = Depends(get_db),
):
    institution = await get_or_404(db, Institution, institution_id)
    updates = data.model_dump(exclude_unset=True)
    if "name" in updates:
        await _ensure_unique_name(db, updates["name"], exclude_id=institution_id)
    for field, value in updates.items():
        setattr(institution, field, value)
    await db.commit()
    await db.refresh(institution)
    return institution


@router.delete("/{institution_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_institution(institution_id: int, _: AdminUser, db: AsyncSession = Depends(get_db)):
    institution = await get_or_404(db, Institution, institution_id)
    user_count = (
        await db.execute(select(func.count(User.id)).where(User.institution_id == institution_id))
    ).scalar_one()
    if user_count:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete an institution that still has users",
        )
    await db.delete(institution)
    await db.commit()


@router.get("/{institution_id}/level-settings", response_model=list[LevelSettingResponse])
async def get_level_settings(
    institution_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    await get_or_404(db, Institution, institution_id)
    ensure_institution_access(current_user, institution_id, "Institution")
    result = await db.execute(
        select(SkillLevelSetting)
        .where(SkillLevelSetting.institution_id == institution_id)
        .order_by(SkillLevelSetting.order)
    )
    return result.scalars().all()


@router.put("/{institution_id}/level-settings", response_model=list[LevelSettingResponse])
async def replace_level_settings(
    institution_id: int,
    items: list[LevelSettingItem],
    _: AdminUser,
    db: AsyncSession = Depends(get_db),
):
    """Replace the proficiency-label template. Orders must run 1..n."""
    await get_or_404(db, Institution, institution_id)

    orders = sorted(item.order for item in items)
    if orders != list(range(1, len(items) + 1)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Level orders must be unique and contiguous starting at 1",
        )

    await db.execute(delete(SkillLevelSetting).where(SkillLevelSetting.institution_id == institution_id))
    settings_rows = [
        SkillLevelSetting(institution_id=institution_id, **item.model_dump())
        for item in sorted(items, key=lambda i: i.order)
    ]
    db.add_all(settings_rows)
    await db.commit()
    for row in settings_rows:
        await db.refresh(row)
    return settings_rows
