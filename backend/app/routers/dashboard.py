from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment, AssessmentStatus
from app.models.attempt import Attempt, AttemptStatus
from app.models.dispute import Dispute, DisputeStatus
from app.models.domain import Domain
from app.models.group import Group
from app.models.institution import Institution
from app.models.result import Result
from app.models.skill import Skill
from app.models.source import Source
from app.models.user import User, UserRole
from app.routers.auth import AdminUser, StaffUser
from app.routers.common import require_institution

router = APIRouter()

RECENT_ATTEMPTS = 5


# Schemas
class RecentAttempt(BaseModel):
    id: int
    assessment_name: str
    student_name: str
    status: AttemptStatus
    final_grade: float
    created_at: datetime


class TeacherDashboard(BaseModel):
    students: int
    groups: int
    domains: int
    skills: int
    assessments: int
    active_assessments: int
    inactive_assessments: int
    attempts: int
    completed_attempts: int
    pending_disputes: int
    recent_attempts: list[RecentAttempt]


class AdminDashboard(BaseModel):
    institutions: int
    users: int
    students: int
    teachers: int
    groups: int
    domains: int
    skills: int
    sources: int
    assessments: int
    attempts: int
    disputes: int


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar_one()


@router.get("/teacher", response_model=TeacherDashboard)
async def teacher_dashboard(current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    """Counts for the caller's institution and the caller's own assessments."""
    institution_id = require_institution(current_user)
    own = (Assessment.teacher_id == current_user.id, Assessment.institution_id == institution_id)

    status_rows = await db.execute(
        select(Assessment.status, func.count(Assessment.id)).where(*own).group_by(Assessment.status)
    )
    by_status = dict(status_rows.all())
    active = by_status.get(AssessmentStatus.ACTIVE, 0)
    inactive = by_status.get(AssessmentStatus.INACTIVE, 0)

    own_attempts = select(Attempt.id).join(Assessment, Assessment.id == Attempt.assessment_id).where(*own)

    recent = (
        await db.execute(
            select(Attempt)
            .where(Attempt.id.in_(own_attempts))
            .options(selectinload(Attempt.assessment), selectinload(Attempt.user))
            .order_by(Attempt.created_at.desc(), Attempt.id.desc())
            .limit(RECENT_ATTEMPTS)
        )
    ).scalars().all()

    return TeacherDashboard(
        students=await _count(
            db,
            select(func.count(User.id)).where(
                User.institution_id == institution_id, User.role == UserRole.STUDENT
            ),
        ),
        groups=await _count(db, select(func.count(Group.id)).where(Group.institution_id == institution_id)),
        domains=await _count(db, select(func.count(Domain.id)).where(Domain.institution_id == institution_id)),
        skills=await _count(
            db,
            select(func.count(Skill.id))
            .join(Domain, Domain.id == Skill.domain_id)
            .where(Domain.institution_id == institution_id),
        ),
        assessments=active + inactive,
        active_assessments=active,
        inactive_assessments=inactive,
        attempts=await _count(db, select(func.count()).select_from(own_attempts.subquery())),
        completed_attempts=await _count(
            db,
            select(func.count(Attempt.id)).where(
                Attempt.id.in_(own_attempts), Attempt.status == AttemptStatus.COMPLETED
            ),
        ),
        pending_disputes=await _count(
            db,
            select(func.count(Dispute.id))
            .join(Result, Result.id == Dispute.result_id)
            .where(Result.attempt_id.in_(own_attempts), Dispute.status == DisputeStatus.PENDING),
        ),
        recent_attempts=[
            RecentAttempt(
                id=a.id,
                assessment_name=a.assessment.name,
                student_name=a.user.full_name,
                status=a.status,
                final_grade=a.final_grade,
                created_at=a.created_at,
            )
            for a in recent
        ],
    )


@router.get("/admin", response_model=AdminDashboard)
async def admin_dashboard(_: AdminUser, db: AsyncSession = Depends(get_db)):
    return AdminDashboard(
        institutions=await _count(db, select(func.count(Institution.id))),
        users=await _count(db, select(func.count(User.id))),
        students=await _count(db, select(func.count(User.id)).where(User.role == UserRole.STUDENT)),
        teachers=await _count(db, select(func.count(User.id)).where(User.role == UserRole.TEACHER)),
        groups=await _count(db, select(func.count(Group.id))),
        domains=await _count(db, select(func.count(Domain.id))),
        skills=await _count(db, select(func.count(Skill.id))),
        sources=await _count(db, select(func.count(Source.id))),
        assessments=await _count(db, select(func.count(Assessment.id))),
        attempts=await _count(db, select(func.count(Attempt.id))),
        disputes=await _count(db, select(func.count(Dispute.id))),
    )
