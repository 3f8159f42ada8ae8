from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.domain import Domain
from app.models.skill import Skill
from app.models.user import User, UserRole
from app.routers.auth import StaffUser
from app.routers.common import (
    Page,
    Pagination,
    paginate,
    get_or_404,
    ensure_institution_access,
    scoped_institution_id,
    require_institution,
)

router = APIRouter()


# Schemas
class DomainCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    institution_id: int | None = None


class DomainUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None


class DomainResponse(BaseModel):
    id: int
    institution_id: int
    name: str
    description: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class DomainSkillResponse(BaseModel):
    id: int
    name: str
    description: str

    class Config:
        from_attributes = True


async def get_scoped_domain(db: AsyncSession, domain_id: int, user: User) -> Domain:
    domain = await get_or_404(db, Domain, domain_id)
    ensure_institution_access(user, domain.institution_id, "Domain")
    return domain


# Endpoints
@router.get("", response_model=Page[DomainResponse])
async def list_domains(
    current_user: StaffUser,
    search: str | None = None,
    institution_id: int | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Domain).order_by(Domain.name, Domain.id)
    scope = scoped_institution_id(current_user)
    if scope is not None:
        stmt = stmt.where(Domain.institution_id == scope)
    elif institution_id is not None:
        stmt = stmt.where(Domain.institution_id == institution_id)
    if search:
        stmt = stmt.where(Domain.name.ilike(f"%{search}%"))

    items, total = await paginate(db, stmt, pagination)
    return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)


@router.post("", response_model=DomainResponse, status_code=status.HTTP_201_CREATED)
async def create_domain(data: DomainCreate, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    if current_user.role == UserRole.ADMIN and data.institution_id is not None:
        institution_id = data.institution_id
    else:
        institution_id = require_institution(current_user)

    domain = Domain(institution_id=institution_id, name=data.name, description=data.description)
    db.add(domain)
    await db.commit()
    await db.refresh(domain)
    return domain


@router.get("/{domain_id}", response_model=DomainResponse)
async def get_domain(domain_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    return await get_scoped_domain(db, domain_id, current_user)


@router.put("/{domain_id}", response_model=DomainResponse)
async def update_domain(
    domain_id: int,
    data: DomainUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    domain = await get_scoped_domain(db, domain_id, current_user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(domain, field, value)
    await db.commit()
    await db.refresh(domain)
    return domain


@router.delete("/{domain_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_domain(domain_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    domain = await get_scoped_domain(db, domain_id, current_user)
    skill_count = (
        await db.execute(select(func.count(Skill.id)).where(Skill.domain_id == domain_id))
    ).scalar_one()
    if skill_count:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete a domain that still has skills",
        )
    await db.delete(domain)
    await db.commit()


@router.get("/{domain_id}/skills", response_model=list[DomainSkillResponse])
async def list_domain_skills(domain_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    await get_scoped_domain(db, domain_id, current_user)
    result = await db.execute(select(Skill).where(Skill.domain_id == domain_id).order_by(Skill.name))
    return result.scalars().all()
