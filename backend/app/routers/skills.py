from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select, func, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import assessments_skills
from app.models.domain import Domain
from app.models.institution import SkillLevelSetting
from app.models.result import Result
from app.models.skill import Skill, SkillLevel, skills_sources
from app.models.source import Source, ProcessingStatus
from app.models.user import User
from app.routers.auth import StaffUser
from app.routers.common import (
    Page,
    Pagination,
    paginate,
    get_or_404,
    ensure_institution_access,
    scoped_institution_id,
)

router = APIRouter()


# Schemas
class SkillLevelItem(BaseModel):
    order: int = Field(ge=1)
    label: str = Field(min_length=1, max_length=100)
    standard: float = Field(0.0, ge=0)
    description: str = ""
    skill_level_setting_id: int | None = None


class SkillLevelResponse(SkillLevelItem):
    id: int

    class Config:
        from_attributes = True


class SkillCreate(BaseModel):
    domain_id: int
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    levels: list[SkillLevelItem] | None = None


class SkillUpdate(BaseModel):
    domain_id: int | None = None
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None


class SkillResponse(BaseModel):
    id: int
    domain_id: int
    domain_name: str
    institution_id: int
    name: str
    description: str
    level_count: int
    created_at: datetime


class SkillSourceResponse(BaseModel):
    id: int
    title: str
    authors: str | None
    publication_year: int | None
    processing_status: ProcessingStatus

    class Config:
        from_attributes = True


class SkillSourcesRequest(BaseModel):
    source_ids: list[int]


def _to_response(skill: Skill) -> SkillResponse:
    return SkillResponse(
        id=skill.id,
        domain_id=skill.domain_id,
        domain_name=skill.domain.name,
        institution_id=skill.domain.institution_id,
        name=skill.name,
        description=skill.description,
        level_count=len(skill.levels),
        created_at=skill.created_at,
    )


def _skill_query():
    return select(Skill).options(selectinload(Skill.domain), selectinload(Skill.levels))


async def get_scoped_skill(db: AsyncSession, skill_id: int, user: User) -> Skill:
    result = await db.execute(_skill_query().where(Skill.id == skill_id))
    skill = result.scalar_one_or_none()
    if skill is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Skill not found",
        )
    ensure_institution_access(user, skill.domain.institution_id, "Skill")
    return skill


async def _get_scoped_domain(db: AsyncSession, domain_id: int, user: User) -> Domain:
    domain = await db.get(Domain, domain_id)
    if domain is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Domain not found",
        )
    ensure_institution_access(user, domain.institution_id, "Domain")
    return domain


def validate_levels(levels: list[SkillLevelItem]) -> None:
    orders = [level.order for level in levels]
    if len(set(orders)) != len(orders):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Level orders must be unique",
        )
    if any(not level.label.strip() for level in levels):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Level labels cannot be empty",
        )


async def levels_from_template(db: AsyncSession, institution_id: int) -> list[SkillLevelItem]:
    """Default levels copied from the institution's label template."""
    result = await db.execute(
        select(SkillLevelSetting)
        .where(SkillLevelSetting.institution_id == institution_id)
        .order_by(SkillLevelSetting.order)
    )
    return [
        SkillLevelItem(
            order=setting.order,
            label=setting.label,
            # Upper bound of the band is the score awarded at that level
            standard=setting.upper_limit if setting.upper_limit is not None else float(setting.order),
            description=setting.description,
            skill_level_setting_id=setting.id,
        )
        for setting in result.scalars().all()
    ]


# Endpoints
@router.get("", response_model=Page[SkillResponse])
async def list_skills(
    current_user: StaffUser,
    search: str | None = None,
    domain_id: int | None = None,
    institution_id: int | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = _skill_query().join(Domain, Domain.id == Skill.domain_id).order_by(Skill.name, Skill.id)
    scope = scoped_institution_id(current_user)
    if scope is not None:
        stmt = stmt.where(Domain.institution_id == scope)
    elif institution_id is not None:
        stmt = stmt.where(Domain.institution_id == institution_id)
    if domain_id is not None:
        stmt = stmt.where(Skill.domain_id == domain_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(Skill.name.ilike(pattern) | Skill.description.ilike(pattern))

    skills, total = await paginate(db, stmt, pagination)
    return Page(
        items=[_to_response(s) for s in skills],
        total=total,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.post("", response_model=SkillResponse, status_code=status.HTTP_201_CREATED)
async def create_skill(data: SkillCreate, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    """Create a skill; without explicit levels it inherits the institution template."""
    domain = await _get_scoped_domain(db, data.domain_id, current_user)

    levels = data.levels
    if levels is None:
        levels = await levels_from_template(db, domain.institution_id)
    validate_levels(levels)

    skill = Skill(domain_id=domain.id, name=data.name, description=data.description)
    skill.levels = [SkillLevel(**level.model_dump()) for level in sorted(levels, key=lambda l: l.order)]
    db.add(skill)
    await db.commit()

    return _to_response(await get_scoped_skill(db, skill.id, current_user))


@router.get("/{skill_id}", response_model=SkillResponse)
async def get_skill(skill_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    return _to_response(await get_scoped_skill(db, skill_id, current_user))


@router.put("/{skill_id}", response_model=SkillResponse)
async def update_skill(
    skill_id: int,
    data: SkillUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    skill = await get_scoped_skill(db, skill_id, current_user)
    updates = data.model_dump(exclude_unset=True)
    if "domain_id" in updates:
        await _get_scoped_domain(db, updates["domain_id"], current_user)
    for field, value in updates.items():
        setattr(skill, field, value)
    await db.commit()

    db.expire(skill)
    return _to_response(await get_scoped_skill(db, skill_id, current_user))


@router.delete("/{skill_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_skill(skill_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    skill = await get_scoped_skill(db, skill_id, current_user)
    used = (
        await db.execute(select(func.count(Result.id)).where(Result.skill_id == skill_id))
    ).scalar_one()
    if used:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete a skill that already has results",
        )
    in_assessments = (
        await db.execute(
            select(func.count()).select_from(assessments_skills).where(assessments_skills.c.skill_id == skill_id)
        )
    ).scalar_one()
    if in_assessments:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete skill associated with assessments",
        )
    await db.delete(skill)
    await db.commit()


# Levels
@router.get("/{skill_id}/levels", response_model=list[SkillLevelResponse])
async def get_skill_levels(skill_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    skill = await get_scoped_skill(db, skill_id, current_user)
    return skill.levels


@router.put("/{skill_id}/levels", response_model=list[SkillLevelResponse])
async def replace_skill_levels(
    skill_id: int,
    levels: list[SkillLevelItem],
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Replace the ordered level list of a skill."""
    await get_scoped_skill(db, skill_id, current_user)
    if not levels:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one level is required",
        )
    validate_levels(levels)

    graded = (
        await db.execute(select(func.count(Result.id)).where(Result.skill_id == skill_id))
    ).scalar_one()
    if graded:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Levels cannot be replaced once results reference them",
        )

    await db.execute(delete(SkillLevel).where(SkillLevel.skill_id == skill_id))
    rows = [
        SkillLevel(skill_id=skill_id, **level.model_dump())
        for level in sorted(levels, key=lambda l: l.order)
    ]
    db.add_all(rows)
    await db.commit()
    for row in rows:
        await db.refresh(row)
    return rows


# Sources
@router.get("/{skill_id}/sources", response_model=list[SkillSourceResponse])
async def get_skill_sources(skill_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    await get_scoped_skill(db, skill_id, current_user)
    result = await db.execute(
        select(Source)
        .join(skills_sources, skills_sources.c.source_id == Source.id)
        .where(skills_sources.c.skill_id == skill_id)
        .order_by(Source.title)
    )
    return result.scalars().all()


@router.put("/{skill_id}/sources", response_model=list[SkillSourceResponse])
async def replace_skill_sources(
    skill_id: int,
    data: SkillSourcesRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    await get_scoped_skill(db, skill_id, current_user)

    source_ids = set(data.source_ids)
    if source_ids:
        found = set(
            (await db.execute(select(Source.id).where(Source.id.in_(source_ids)))).scalars()
        )
        if found != source_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="One or more sources do not exist",
            )

    await db.execute(delete(skills_sources).where(skills_sources.c.skill_id == skill_id))
    if source_ids:
        await db.execute(
            insert(skills_sources),
            [{"skill_id": skill_id, "source_id": source_id} for source_id in sorted(source_ids)],
        )
    await db.commit()
    return await get_skill_sources(skill_id, current_user, db)
