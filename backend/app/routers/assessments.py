from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment, AssessmentStatus
from app.models.attempt import Attempt
from app.models.domain import Domain
from app.models.group import Group
from app.models.skill import Skill
from app.models.user import User, UserRole
from app.routers.auth import StaffUser, SUPPORTED_LANGUAGES
from app.routers.common import Page, Pagination, paginate, require_institution
from app.services.prompts import sanitize_text

router = APIRouter()

MAX_SKILLS_PER_ASSESSMENT = 4
MIN_DISPUTE_PERIOD_DAYS = 3


# Schemas
class AssessmentBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    difficulty_level: str = Field(min_length=1, max_length=50)
    educational_level: str = Field(min_length=1, max_length=100)
    output_language: str = "es"
    evaluation_context: str = Field(min_length=1)
    case_text: str = Field(min_length=1)
    case_solution: str | None = None
    case_sections: dict | None = None
    case_navigation_enabled: bool = False
    questions_per_skill: int = Field(ge=1)
    available_from: datetime
    available_until: datetime
    dispute_period: int
    show_teacher_name: bool = False
    integrity_protection: bool = False
    status: AssessmentStatus = AssessmentStatus.ACTIVE
    skill_ids: list[int]
    group_ids: list[int] = []


class AssessmentCreate(AssessmentBase):
    pass


class AssessmentUpdate(AssessmentBase):
    pass


class AssessmentLimitedUpdate(BaseModel):
    show_teacher_name: bool
    integrity_protection: bool
    available_until: datetime
    dispute_period: int
    status: AssessmentStatus


class AssessmentGroupsRequest(BaseModel):
    group_ids: list[int]


class SkillSummary(BaseModel):
    id: int
    name: str
    description: str

    class Config:
        from_attributes = True


class GroupSummary(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class AssessmentListItem(BaseModel):
    id: int
    name: str
    description: str
    teacher_id: int
    status: AssessmentStatus
    available_from: datetime
    available_until: datetime
    skill_names: list[str]
    group_names: list[str]
    created_at: datetime


class AssessmentResponse(BaseModel):
    id: int
    institution_id: int
    teacher_id: int
    teacher_name: str | None = None
    show_teacher_name: bool
    integrity_protection: bool
    name: str
    description: str
    difficulty_level: str
    educational_level: str
    output_language: str
    evaluation_context: str
    case_text: str
    case_solution: str | None
    case_sections: dict | None
    case_navigation_enabled: bool
    questions_per_skill: int
    available_from: datetime
    available_until: datetime
    dispute_period: int
    status: AssessmentStatus
    skills: list[SkillSummary]
    groups: list[GroupSummary]
    attempt_count: int = 0
    created_at: datetime
    updated_at: datetime


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _assessment_query():
    return select(Assessment).options(
        selectinload(Assessment.skills),
        selectinload(Assessment.groups),
        selectinload(Assessment.teacher),
    )


async def attempt_count(db: AsyncSession, assessment_id: int) -> int:
    return (
        await db.execute(select(func.count(Attempt.id)).where(Attempt.assessment_id == assessment_id))
    ).scalar_one()


def to_response(assessment: Assessment, attempts: int = 0) -> AssessmentResponse:
    return AssessmentResponse(
        id=assessment.id,
        institution_id=assessment.institution_id,
        teacher_id=assessment.teacher_id,
        teacher_name=assessment.teacher.full_name if assessment.teacher else None,
        show_teacher_name=assessment.show_teacher_name,
        integrity_protection=assessment.integrity_protection,
        name=assessment.name,
        description=assessment.description,
        difficulty_level=assessment.difficulty_level,
        educational_level=assessment.educational_level,
        output_language=assessment.output_language,
        evaluation_context=assessment.evaluation_context,
        case_text=assessment.case_text,
        case_solution=assessment.case_solution,
        case_sections=assessment.case_sections,
        case_navigation_enabled=assessment.case_navigation_enabled,
        questions_per_skill=assessment.questions_per_skill,
        available_from=assessment.available_from,
        available_until=assessment.available_until,
        dispute_period=assessment.dispute_period,
        status=assessment.status,
        skills=[SkillSummary.model_validate(s) for s in assessment.skills],
        groups=[GroupSummary.model_validate(g) for g in assessment.groups],
        attempt_count=attempts,
        created_at=assessment.created_at,
        updated_at=assessment.updated_at,
    )


def scope_assessments(stmt, user: User):
    """Teachers see their own assessments, clerks their institution's, admins all."""
    if user.role == UserRole.TEACHER:
        return stmt.where(
            Assessment.teacher_id == user.id,
            Assessment.institution_id == user.institution_id,
        )
    if user.role == UserRole.CLERK:
        return stmt.where(Assessment.institution_id == user.institution_id)
    return stmt


async def get_scoped_assessment(db: AsyncSession, assessment_id: int, user: User) -> Assessment:
    stmt = scope_assessments(_assessment_query().where(Assessment.id == assessment_id), user)
    assessment = (await db.execute(stmt)).scalar_one_or_none()
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found",
        )
    return assessment


def _validate_schedule(available_from: datetime, available_until: datetime, dispute_period: int) -> None:
    if available_until <= available_from:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Available until date must be after available from date",
        )
    if dispute_period < MIN_DISPUTE_PERIOD_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Dispute period must be at least {MIN_DISPUTE_PERIOD_DAYS} days",
        )


async def _load_skills(db: AsyncSession, skill_ids: list[int], institution_id: int) -> list[Skill]:
    unique_ids = list(dict.fromkeys(skill_ids))
    if not 1 <= len(unique_ids) <= MAX_SKILLS_PER_ASSESSMENT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"An assessment needs between 1 and {MAX_SKILLS_PER_ASSESSMENT} skills",
        )
    result = await db.execute(
        select(Skill)
        .join(Domain, Domain.id == Skill.domain_id)
        .where(Skill.id.in_(unique_ids), Domain.institution_id == institution_id)
    )
    skills = {s.id: s for s in result.scalars().all()}
    if len(skills) != len(unique_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="All skills must belong to the assessment's institution",
        )
    return [skills[skill_id] for skill_id in unique_ids]


async def load_groups(db: AsyncSession, group_ids: list[int], institution_id: int) -> list[Group]:
    unique_ids = list(dict.fromkeys(group_ids))
    if not unique_ids:
        return []
    result = await db.execute(
        select(Group).where(Group.id.in_(unique_ids), Group.institution_id == institution_id)
    )
    groups = result.scalars().all()
    if len(groups) != len(unique_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="All groups must belong to the assessment's institution",
        )
    return list(groups)


async def _apply_full_payload(
    db: AsyncSession,
    assessment: Assessment,
    data: AssessmentBase,
    check_start: bool,
) -> None:
    available_from = to_naive_utc(data.available_from)
    available_until = to_naive_utc(data.available_until)

    if data.output_language not in SUPPORTED_LANGUAGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Output language must be one of: {', '.join(SUPPORTED_LANGUAGES)}",
        )
    if check_start and available_from < datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Available from date cannot be in the past",
        )
    _validate_schedule(available_from, available_until, data.dispute_period)

    case_text = sanitize_text(data.case_text)
    if not case_text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Case text cannot be empty",
        )

    assessment.skills = await _load_skills(db, data.skill_ids, assessment.institution_id)
    assessment.groups = await load_groups(db, data.group_ids, assessment.institution_id)

    assessment.name = data.name.strip()
    assessment.description = data.description
    assessment.difficulty_level = data.difficulty_level
    assessment.educational_level = data.educational_level
    assessment.output_language = data.output_language
    assessment.evaluation_context = data.evaluation_context
    assessment.case_text = case_text
    assessment.case_solution = sanitize_text(data.case_solution) if data.case_solution else None
    assessment.case_sections = data.case_sections
    assessment.case_navigation_enabled = data.case_navigation_enabled
    assessment.questions_per_skill = data.questions_per_skill
    assessment.available_from = available_from
    assessment.available_until = available_until
    assessment.dispute_period = data.dispute_period
    assessment.show_teacher_name = data.show_teacher_name
    assessment.integrity_protection = data.integrity_protection
    assessment.status = data.status


# Endpoints
@router.get("", response_model=Page[AssessmentListItem])
async def list_assessments(
    current_user: StaffUser,
    search: str | None = None,
    status_filter: AssessmentStatus | None = Query(None, alias="status"),
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = scope_assessments(
        select(Assessment)
        .options(selectinload(Assessment.skills), selectinload(Assessment.groups))
        .order_by(Assessment.created_at.desc(), Assessment.id.desc()),
        current_user,
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Assessment.name.ilike(pattern), Assessment.description.ilike(pattern)))
    if status_filter is not None:
        stmt = stmt.where(Assessment.status == status_filter)

    assessments, total = await paginate(db, stmt, pagination)
    return Page(
        items=[
            AssessmentListItem(
                id=a.id,
                name=a.name,
                description=a.description,
                teacher_id=a.teacher_id,
                status=a.status,
                available_from=a.available_from,
                available_until=a.available_until,
                skill_names=[s.name for s in a.skills],
                group_names=[g.name for g in a.groups],
                created_at=a.created_at,
            )
            for a in assessments
        ],
        total=total,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.post("", response_model=AssessmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assessment(
    data: AssessmentCreate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    institution_id = require_institution(current_user)

    assessment = Assessment(institution_id=institution_id, teacher_id=current_user.id)
    await _apply_full_payload(db, assessment, data, check_start=True)
    db.add(assessment)
    await db.commit()

    return to_response(await get_scoped_assessment(db, assessment.id, current_user))


@router.get("/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment(assessment_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    return to_response(assessment, await attempt_count(db, assessment.id))


@router.put("/{assessment_id}", response_model=AssessmentResponse)
async def update_assessment(
    assessment_id: int,
    data: AssessmentUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Full edit; only allowed while nobody has attempted the assessment."""
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    if await attempt_count(db, assessment.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot edit assessment that has attempts",
        )

    start_changed = to_naive_utc(data.available_from) != assessment.available_from
    await _apply_full_payload(db, assessment, data, check_start=start_changed)
    await db.commit()

    return to_response(await get_scoped_assessment(db, assessment.id, current_user))


@router.put("/{assessment_id}/limited", response_model=AssessmentResponse)
async def update_assessment_limited(
    assessment_id: int,
    data: AssessmentLimitedUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Settings that stay editable after students have started."""
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    available_until = to_naive_utc(data.available_until)
    _validate_schedule(assessment.available_from, available_until, data.dispute_period)

    assessment.show_teacher_name = data.show_teacher_name
    assessment.integrity_protection = data.integrity_protection
    assessment.available_until = available_until
    assessment.dispute_period = data.dispute_period
    assessment.status = data.status
    await db.commit()

    return to_response(assessment, await attempt_count(db, assessment.id))


@router.delete("/{assessment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment(assessment_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    if await attempt_count(db, assessment.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete assessment that has attempts",
        )
    await db.delete(assessment)
    await db.commit()


@router.get("/{assessment_id}/groups", response_model=list[GroupSummary])
async def get_assessment_groups(
    assessment_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    return assessment.groups


@router.put("/{assessment_id}/groups", response_model=list[GroupSummary])
async def replace_assessment_groups(
    assessment_id: int,
    data: AssessmentGroupsRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    assessment = await get_scoped_assessment(db, assessment_id, current_user)
    assessment.groups = await load_groups(db, data.group_ids, assessment.institution_id)
    await db.commit()
    return assessment.groups
