from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment
from app.models.attempt import Attempt
from app.models.dispute import DisputeStatus
from app.models.institution import Institution
from app.models.result import Result
from app.models.skill import SkillLevel
from app.routers.assessments import scope_assessments
from app.routers.auth import StaffUser
from app.services.grading import compute_final_grade, dispute_deadline

router = APIRouter()

DEFAULT_SCORING_SCALE = 10


# Schemas
class DisputeSummary(BaseModel):
    id: int
    status: DisputeStatus
    student_argument: str
    teacher_argument: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ResultItem(BaseModel):
    id: int
    skill_id: int
    skill_name: str
    skill_description: str
    skill_level_id: int
    level_label: str
    level_order: int
    level_description: str
    grade: float
    feedback: str
    dispute: DisputeSummary | None = None


class AttemptResultsResponse(BaseModel):
    attempt_id: int
    assessment_id: int
    assessment_name: str
    status: str
    final_grade: float
    max_score: int
    completed_at: datetime | None
    dispute_deadline: datetime | None
    can_dispute: bool
    results: list[ResultItem]


class ResultUpdate(BaseModel):
    skill_level_id: int
    feedback: str


def _results_query():
    return select(Result).options(
        selectinload(Result.skill),
        selectinload(Result.skill_level),
        selectinload(Result.dispute),
    )


async def build_attempt_results(db: AsyncSession, attempt: Attempt) -> AttemptResultsResponse:
    """Results of one attempt with level details, dispute state and deadline."""
    assessment = await db.get(Assessment, attempt.assessment_id)
    institution = await db.get(Institution, assessment.institution_id)

    rows = await db.execute(
        _results_query().where(Result.attempt_id == attempt.id).order_by(Result.id)
    )
    results = rows.scalars().all()

    deadline = dispute_deadline(attempt.completed_at, assessment.dispute_period)
    return AttemptResultsResponse(
        attempt_id=attempt.id,
        assessment_id=assessment.id,
        assessment_name=assessment.name,
        status=attempt.status.value,
        final_grade=attempt.final_grade,
        max_score=institution.scoring_scale if institution else DEFAULT_SCORING_SCALE,
        completed_at=attempt.completed_at,
        dispute_deadline=deadline,
        can_dispute=deadline is not None and datetime.utcnow() <= deadline,
        results=[
            ResultItem(
                id=r.id,
                skill_id=r.skill_id,
                skill_name=r.skill.name,
                skill_description=r.skill.description,
                skill_level_id=r.skill_level_id,
                level_label=r.skill_level.label,
                level_order=r.skill_level.order,
                level_description=r.skill_level.description,
                grade=r.grade,
                feedback=r.feedback,
                dispute=DisputeSummary.model_validate(r.dispute) if r.dispute else None,
            )
            for r in results
        ],
    )


async def recompute_final_grade(db: AsyncSession, attempt: Attempt) -> None:
    grades = (
        await db.execute(select(Result.grade).where(Result.attempt_id == attempt.id))
    ).scalars().all()
    attempt.final_grade = compute_final_grade(list(grades))


# Endpoints
@router.put("/{result_id}", response_model=ResultItem)
async def update_result(
    result_id: int,
    data: ResultUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Override the level the grader assigned; grades are recomputed."""
    result = (
        await db.execute(_results_query().where(Result.id == result_id))
    ).scalar_one_or_none()
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Result not found",
        )

    attempt = await db.get(Attempt, result.attempt_id)
    visible = await db.execute(
        scope_assessments(select(Assessment.id).where(Assessment.id == attempt.assessment_id), current_user)
    )
    if visible.first() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Result not found",
        )

    level = await db.get(SkillLevel, data.skill_level_id)
    if level is None or level.skill_id != result.skill_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Skill level does not belong to the result's skill",
        )

    result.skill_level_id = level.id
    result.skill_level = level
    result.grade = level.standard
    result.feedback = data.feedback
    await db.flush()
    await recompute_final_grade(db, attempt)
    await db.commit()

    return ResultItem(
        id=result.id,
        skill_id=result.skill_id,
        skill_name=result.skill.name,
        skill_description=result.skill.description,
        skill_level_id=level.id,
        level_label=level.label,
        level_order=level.order,
        level_description=level.description,
        grade=result.grade,
        feedback=result.feedback,
        dispute=DisputeSummary.model_validate(result.dispute) if result.dispute else None,
    )
