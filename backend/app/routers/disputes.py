"""
Disputes Router

Students challenge a single result within the assessment's dispute period;
staff answer and move the dispute through its statuses. Status changes are
emailed to the student on a best-effort basis.
"""

from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment
from app.models.attempt import Attempt, AttemptStatus
from app.models.dispute import Dispute, DisputeStatus
from app.models.result import Result
from app.routers.assessments import scope_assessments
from app.routers.auth import StaffUser, StudentUser
from app.routers.results import DisputeSummary
from app.services.email import dispute_status_email, send_email
from app.services.grading import dispute_deadline

router = APIRouter()
logger = logging.getLogger(__name__)


# Schemas
class DisputeCreate(BaseModel):
    result_id: int
    student_argument: str = Field(min_length=1)


class DisputeUpdate(BaseModel):
    teacher_argument: str = Field(min_length=1)
    status: DisputeStatus


class DisputeResponse(DisputeSummary):
    result_id: int


async def _load_result(db: AsyncSession, result_id: int) -> Result | None:
    return (
        await db.execute(
            select(Result)
            .where(Result.id == result_id)
            .options(
                selectinload(Result.attempt).selectinload(Attempt.assessment),
                selectinload(Result.attempt).selectinload(Attempt.user),
                selectinload(Result.skill),
                selectinload(Result.dispute),
            )
        )
    ).scalar_one_or_none()


# Student endpoints
@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
async def create_dispute(data: DisputeCreate, current_user: StudentUser, db: AsyncSession = Depends(get_db)):
    result = await _load_result(db, data.result_id)
    if (
        result is None
        or result.attempt.user_id != current_user.id
        or result.attempt.status != AttemptStatus.COMPLETED
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Result not found",
        )

    if result.dispute is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A dispute already exists for this result",
        )

    deadline = dispute_deadline(result.attempt.completed_at, result.attempt.assessment.dispute_period)
    if deadline is None or datetime.utcnow() > deadline:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The dispute period for this assessment has ended",
        )

    dispute = Dispute(
        result_id=result.id,
        status=DisputeStatus.PENDING,
        student_argument=data.student_argument.strip(),
    )
    db.add(dispute)
    await db.commit()
    await db.refresh(dispute)

    logger.info("[Disputes] Student %d disputed result %d", current_user.id, result.id)
    return dispute


@router.get("/result/{result_id}", response_model=DisputeResponse | None)
async def get_result_dispute(result_id: int, current_user: StudentUser, db: AsyncSession = Depends(get_db)):
    """The dispute on one of the student's results, or null when none was filed."""
    result = await _load_result(db, result_id)
    if result is None or result.attempt.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Result not found",
        )
    return result.dispute


# Staff endpoints
@router.put("/{dispute_id}", response_model=DisputeResponse)
async def update_dispute(
    dispute_id: int,
    data: DisputeUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    dispute = await db.get(Dispute, dispute_id)
    if dispute is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dispute not found",
        )

    result = await _load_result(db, dispute.result_id)
    visible = await db.execute(
        scope_assessments(
            select(Assessment.id).where(Assessment.id == result.attempt.assessment_id), current_user
        )
    )
    if visible.first() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dispute not found",
        )

    status_changed = dispute.status != data.status
    dispute.teacher_argument = data.teacher_argument.strip()
    dispute.status = data.status
    await db.commit()
    await db.refresh(dispute)

    if status_changed:
        student = result.attempt.user
        subject, body = dispute_status_email(
            student.language_preference,
            student.given_name,
            result.attempt.assessment.name,
            result.skill.name,
            dispute.status.value,
            dispute.teacher_argument,
        )
        if not await send_email(student.email, subject, body):
            logger.warning("[Disputes] Status email for dispute %d was not delivered", dispute.id)

    return dispute
