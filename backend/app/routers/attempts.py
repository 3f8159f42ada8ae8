from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment
from app.models.attempt import Attempt, AttemptStatus, ConversationMessage
from app.models.dispute import Dispute
from app.models.result import Result
from app.models.user import User
from app.routers.assessments import scope_assessments
from app.routers.auth import AdminUser, StaffUser
from app.routers.common import Page, Pagination, paginate
from app.routers.results import AttemptResultsResponse, build_attempt_results
from app.routers.student import MessageResponse

router = APIRouter()


# Schemas
class AttemptListItem(BaseModel):
    id: int
    assessment_id: int
    assessment_name: str
    user_id: int
    student_name: str
    student_email: str
    status: AttemptStatus
    final_grade: float
    created_at: datetime
    completed_at: datetime | None


class AttemptDetail(AttemptListItem):
    conversation: list[MessageResponse]


class AttemptDisputeItem(BaseModel):
    id: int
    result_id: int
    skill_id: int
    skill_name: str
    status: str
    student_argument: str
    teacher_argument: str | None
    created_at: datetime
    updated_at: datetime


def _to_item(attempt: Attempt) -> AttemptListItem:
    return AttemptListItem(
        id=attempt.id,
        assessment_id=attempt.assessment_id,
        assessment_name=attempt.assessment.name,
        user_id=attempt.user_id,
        student_name=attempt.user.full_name,
        student_email=attempt.user.email,
        status=attempt.status,
        final_grade=attempt.final_grade,
        created_at=attempt.created_at,
        completed_at=attempt.completed_at,
    )


def _attempt_query(user: User):
    """Attempts on the assessments this staff member may see."""
    return scope_assessments(
        select(Attempt)
        .join(Assessment, Assessment.id == Attempt.assessment_id)
        .options(selectinload(Attempt.assessment), selectinload(Attempt.user)),
        user,
    )


async def get_scoped_attempt(db: AsyncSession, attempt_id: int, user: User) -> Attempt:
    attempt = (
        await db.execute(_attempt_query(user).where(Attempt.id == attempt_id))
    ).scalar_one_or_none()
    if attempt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attempt not found",
        )
    return attempt


# Endpoints
@router.get("", response_model=Page[AttemptListItem])
async def list_attempts(
    current_user: StaffUser,
    assessment_id: int | None = None,
    status_filter: AttemptStatus | None = Query(None, alias="status"),
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = _attempt_query(current_user).order_by(Attempt.created_at.desc(), Attempt.id.desc())
    if assessment_id is not None:
        stmt = stmt.where(Attempt.assessment_id == assessment_id)
    if status_filter is not None:
        stmt = stmt.where(Attempt.status == status_filter)

    attempts, total = await paginate(db, stmt, pagination)
    return Page(
        items=[_to_item(a) for a in attempts],
        total=total,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.get("/{attempt_id}", response_model=AttemptDetail)
async def get_attempt(attempt_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    attempt = await get_scoped_attempt(db, attempt_id, current_user)
    messages = (
        await db.execute(
            select(ConversationMessage)
            .where(ConversationMessage.attempt_id == attempt.id)
            .order_by(ConversationMessage.created_at, ConversationMessage.id)
        )
    ).scalars().all()
    return AttemptDetail(
        **_to_item(attempt).model_dump(),
        conversation=[MessageResponse.model_validate(m) for m in messages],
    )


@router.get("/{attempt_id}/results", response_model=AttemptResultsResponse)
async def get_attempt_results(attempt_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    attempt = await get_scoped_attempt(db, attempt_id, current_user)
    return await build_attempt_results(db, attempt)


@router.get("/{attempt_id}/disputes", response_model=list[AttemptDisputeItem])
async def get_attempt_disputes(attempt_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    await get_scoped_attempt(db, attempt_id, current_user)
    rows = await db.execute(
        select(Dispute)
        .join(Result, Result.id == Dispute.result_id)
        .where(Result.attempt_id == attempt_id)
        .options(selectinload(Dispute.result).selectinload(Result.skill))
        .order_by(Dispute.created_at, Dispute.id)
    )
    return [
        AttemptDisputeItem(
            id=d.id,
            result_id=d.result_id,
            skill_id=d.result.skill_id,
            skill_name=d.result.skill.name,
            status=d.status.value,
            student_argument=d.student_argument,
            teacher_argument=d.teacher_argument,
            created_at=d.created_at,
            updated_at=d.updated_at,
        )
        for d in rows.scalars().all()
    ]


@router.delete("/{attempt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attempt(attempt_id: int, current_user: AdminUser, db: AsyncSession = Depends(get_db)):
    """Remove an attempt with its conversation, results and disputes."""
    attempt = await get_scoped_attempt(db, attempt_id, current_user)
    await db.delete(attempt)
    await db.commit()
