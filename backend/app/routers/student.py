"""
Student Router

What a student sees: assessments assigned to their groups, their attempt,
the grading conversation with the AI evaluator, and their results.
"""

from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import get_db
from app.models.assessment import Assessment, AssessmentStatus, assessments_groups
from app.models.attempt import Attempt, AttemptStatus, ConversationMessage, MessageType
from app.models.group import users_groups
from app.models.skill import Skill
from app.models.user import User
from app.routers.auth import StudentUser
from app.routers.results import AttemptResultsResponse, build_attempt_results
from app.services.grading import GradingError, complete_attempt, resolve_skill_results
from app.services.llm.base import LLMOutputError
from app.services.llm.models import EvaluationResponse
from app.services.llm.orchestrator import LLMOrchestrator, get_orchestrator
from app.services.prompts import (
    compile_evaluation_prompt,
    evaluation_fallback_message,
    evaluator_system_prompt,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# Schemas
class StudentAssessmentItem(BaseModel):
    id: int
    name: str
    description: str
    teacher_name: str | None = None
    available_from: datetime
    available_until: datetime
    skill_names: list[str]
    attempt_id: int | None = None
    attempt_status: AttemptStatus | None = None
    final_grade: float | None = None


class StudentAssessmentsResponse(BaseModel):
    active: list[StudentAssessmentItem]
    completed: list[StudentAssessmentItem]


class StudentSkill(BaseModel):
    id: int
    name: str
    description: str

    class Config:
        from_attributes = True


class StudentAssessmentDetail(BaseModel):
    id: int
    name: str
    description: str
    teacher_name: str | None = None
    difficulty_level: str
    educational_level: str
    output_language: str
    case_text: str
    case_sections: dict | None
    case_navigation_enabled: bool
    integrity_protection: bool
    questions_per_skill: int
    available_from: datetime
    available_until: datetime
    skills: list[StudentSkill]


class AttemptResponse(BaseModel):
    id: int
    assessment_id: int
    status: AttemptStatus
    final_grade: float
    created_at: datetime
    completed_at: datetime | None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    attempt_id: int
    message_type: MessageType
    message_text: str
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    conversation: list[MessageResponse]


class SendMessageRequest(BaseModel):
    message: str = Field(min_length=1)


class SendMessageResponse(BaseModel):
    ai_response: EvaluationResponse
    attempt_status: AttemptStatus
    final_grade: float


def _teacher_name(assessment: Assessment) -> str | None:
    if assessment.show_teacher_name and assessment.teacher:
        return assessment.teacher.full_name
    return None


def _assigned_assessments(user: User):
    """Active assessments assigned to any group the student belongs to."""
    member_groups = select(users_groups.c.group_id).where(users_groups.c.user_id == user.id)
    assigned = select(assessments_groups.c.assessment_id).where(
        assessments_groups.c.group_id.in_(member_groups)
    )
    return select(Assessment).where(
        Assessment.id.in_(assigned),
        Assessment.status == AssessmentStatus.ACTIVE,
    )


async def get_available_assessment(db: AsyncSession, assessment_id: int, user: User) -> Assessment:
    """404 unless the assessment is assigned to the student and open right now."""
    now = datetime.utcnow()
    stmt = (
        _assigned_assessments(user)
        .where(
            Assessment.id == assessment_id,
            Assessment.available_from <= now,
            Assessment.available_until >= now,
        )
        .options(
            selectinload(Assessment.skills).selectinload(Skill.levels),
            selectinload(Assessment.teacher),
        )
    )
    assessment = (await db.execute(stmt)).scalar_one_or_none()
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found or not available",
        )
    return assessment


async def get_own_attempt(db: AsyncSession, attempt_id: int, user: User) -> Attempt:
    attempt = await db.get(Attempt, attempt_id)
    if attempt is None or attempt.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attempt not found",
        )
    return attempt


async def _latest_attempt(db: AsyncSession, assessment_id: int, user_id: int) -> Attempt | None:
    result = await db.execute(
        select(Attempt)
        .where(Attempt.assessment_id == assessment_id, Attempt.user_id == user_id)
        .order_by(Attempt.created_at.desc(), Attempt.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# Assessments
@router.get("/assessments", response_model=StudentAssessmentsResponse)
async def list_student_assessments(current_user: StudentUser, db: AsyncSession = Depends(get_db)):
    """Open assessments split into still-to-do and completed."""
    now = datetime.utcnow()
    result = await db.execute(
        _assigned_assessments(current_user)
        .where(Assessment.available_from <= now, Assessment.available_until >= now)
        .options(selectinload(Assessment.skills), selectinload(Assessment.teacher))
        .order_by(Assessment.available_until, Assessment.id)
    )
    assessments = result.scalars().all()

    active: list[StudentAssessmentItem] = []
    completed: list[StudentAssessmentItem] = []
    for assessment in assessments:
        attempt = await _latest_attempt(db, assessment.id, current_user.id)
        item = StudentAssessmentItem(
            id=assessment.id,
            name=assessment.name,
            description=assessment.description,
            teacher_name=_teacher_name(assessment),
            available_from=assessment.available_from,
            available_until=assessment.available_until,
            skill_names=[s.name for s in assessment.skills],
            attempt_id=attempt.id if attempt else None,
            attempt_status=attempt.status if attempt else None,
            final_grade=attempt.final_grade if attempt else None,
        )
        if attempt and attempt.status == AttemptStatus.COMPLETED:
            completed.append(item)
        else:
            active.append(item)

    return StudentAssessmentsResponse(active=active, completed=completed)


@router.get("/assessments/{assessment_id}", response_model=StudentAssessmentDetail)
async def get_student_assessment(
    assessment_id: int,
    current_user: StudentUser,
    db: AsyncSession = Depends(get_db),
):
    assessment = await get_available_assessment(db, assessment_id, current_user)
    return StudentAssessmentDetail(
        id=assessment.id,
        name=assessment.name,
        description=assessment.description,
        teacher_name=_teacher_name(assessment),
        difficulty_level=assessment.difficulty_level,
        educational_level=assessment.educational_level,
        output_language=assessment.output_language,
        case_text=assessment.case_text,
        case_sections=assessment.case_sections,
        case_navigation_enabled=assessment.case_navigation_enabled,
        integrity_protection=assessment.integrity_protection,
        questions_per_skill=assessment.questions_per_skill,
        available_from=assessment.available_from,
        available_until=assessment.available_until,
        skills=[StudentSkill.model_validate(s) for s in assessment.skills],
    )


@router.post("/assessments/{assessment_id}/attempt", response_model=AttemptResponse)
async def start_attempt(
    assessment_id: int,
    current_user: StudentUser,
    db: AsyncSession = Depends(get_db),
):
    """Return the student's latest attempt, creating one on first visit."""
    await get_available_assessment(db, assessment_id, current_user)

    attempt = await _latest_attempt(db, assessment_id, current_user.id)
    if attempt is None:
        attempt = Attempt(
            assessment_id=assessment_id,
            user_id=current_user.id,
            final_grade=0.0,
            status=AttemptStatus.IN_PROGRESS,
        )
        db.add(attempt)
        await db.commit()
        await db.refresh(attempt)
        logger.info("[Attempts] Student %d started attempt %d", current_user.id, attempt.id)

    return attempt


@router.get("/assessments/{assessment_id}/results", response_model=AttemptResultsResponse)
async def get_assessment_results(
    assessment_id: int,
    current_user: StudentUser,
    db: AsyncSession = Depends(get_db),
):
    """Results of the student's latest completed attempt at an assessment."""
    result = await db.execute(
        select(Attempt)
        .where(
            Attempt.assessment_id == assessment_id,
            Attempt.user_id == current_user.id,
            Attempt.status == AttemptStatus.COMPLETED,
        )
        .order_by(Attempt.completed_at.desc(), Attempt.id.desc())
        .limit(1)
    )
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No completed attempt for this assessment",
        )
    return await build_attempt_results(db, attempt)


# Attempts
@router.get("/attempts/{attempt_id}/conversation", response_model=ConversationResponse)
async def get_conversation(attempt_id: int, current_user: StudentUser, db: AsyncSession = Depends(get_db)):
    await get_own_attempt(db, attempt_id, current_user)
    result = await db.execute(
        select(ConversationMessage)
        .where(ConversationMessage.attempt_id == attempt_id)
        .order_by(ConversationMessage.created_at, ConversationMessage.id)
    )
    return ConversationResponse(conversation=result.scalars().all())


@router.post("/attempts/{attempt_id}/conversation", response_model=SendMessageResponse)
async def send_message(
    attempt_id: int,
    data: SendMessageRequest,
    current_user: StudentUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    """
    Record the student's reply and run one grading turn.

    When the evaluator can determine a level for every skill the attempt
    is closed with one result per skill.
    """
    attempt = await get_own_attempt(db, attempt_id, current_user)
    if attempt.status == AttemptStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assessment already completed",
        )

    result = await db.execute(
        select(Assessment)
        .where(Assessment.id == attempt.assessment_id)
        .options(selectinload(Assessment.skills).selectinload(Skill.levels))
    )
    assessment = result.scalar_one()

    db.add(
        ConversationMessage(
            attempt_id=attempt.id,
            message_type=MessageType.STUDENT,
            message_text=data.message,
        )
    )
    await db.commit()

    history = (
        await db.execute(
            select(ConversationMessage)
            .where(ConversationMessage.attempt_id == attempt.id)
            .order_by(ConversationMessage.created_at, ConversationMessage.id)
        )
    ).scalars().all()

    skills = list(assessment.skills)
    language = assessment.output_language
    prompt = compile_evaluation_prompt(
        case_text=assessment.case_text,
        student_reply=data.message,
        skills=skills,
        history=history,
        # Each completed turn is one student and one AI message
        turn_count=len(history) / 2,
        max_turns=len(skills) * assessment.questions_per_skill,
        language=language,
    )

    try:
        evaluation = await orchestrator.complete_json(
            system_prompt=evaluator_system_prompt(language),
            user_prompt=prompt,
            response_model=EvaluationResponse,
        )
    except LLMOutputError:
        logger.warning("[Attempts] Unusable evaluator output for attempt %d", attempt.id)
        evaluation = EvaluationResponse(
            canDetermineLevel=False,
            message=evaluation_fallback_message(language),
        )

    graded = None
    if evaluation.canDetermineLevel:
        try:
            graded = resolve_skill_results(evaluation.skillResults, skills)
        except GradingError as e:
            logger.error("[Attempts] Rejected evaluator results for attempt %d: %s", attempt.id, e)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"The evaluator returned invalid results: {e}",
            )

    if evaluation.message:
        db.add(
            ConversationMessage(
                attempt_id=attempt.id,
                message_type=MessageType.AI,
                message_text=evaluation.message,
            )
        )

    if graded is not None:
        db.add_all(complete_attempt(attempt, graded))

    await db.commit()
    return SendMessageResponse(
        ai_response=evaluation,
        attempt_status=attempt.status,
        final_grade=attempt.final_grade,
    )


@router.get("/attempts/{attempt_id}/results", response_model=AttemptResultsResponse)
async def get_attempt_results(attempt_id: int, current_user: StudentUser, db: AsyncSession = Depends(get_db)):
    attempt = await get_own_attempt(db, attempt_id, current_user)
    return await build_attempt_results(db, attempt)
