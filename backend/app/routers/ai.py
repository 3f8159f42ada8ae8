"""
AI Router

Authoring helpers backed by the hosted chat model: skill and level
suggestions, case and question generation, and source-grounded case
solutions and feedback. Prompts live in ``services/prompts.py``.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import get_settings
from app.core.database import get_db
from app.models.institution import SkillLevelSetting
from app.models.skill import Skill
from app.models.user import User
from app.routers.auth import CurrentUser, StaffUser
from app.routers.common import ensure_institution_access, require_institution
from app.services.llm.models import SkillSuggestion
from app.services.llm.orchestrator import LLMOrchestrator, get_orchestrator
from app.services.prompts import (
    RAG_FEEDBACK_SYSTEM_PROMPT,
    case_analyst_system_prompt,
    case_designer_system_prompt,
    compile_case_prompt,
    compile_case_solution_prompt,
    compile_domain_skills_prompt,
    compile_questions_prompt,
    compile_rag_feedback_prompt,
    compile_skill_levels_prompt,
    compile_skill_suggest_prompts,
    parse_domain_skill_suggestions,
    parse_level_descriptions,
    parse_suggestion_lines,
    sanitize_text,
)
from app.services.rag.embeddings import Embedder, get_embedder
from app.services.rag.retriever import RetrievedChunk, retrieve_skill_context

router = APIRouter()
logger = logging.getLogger(__name__)

LEVEL_SUGGEST_ATTEMPTS = 3
CASE_SOLUTION_CHUNKS_PER_SKILL = 5
FEEDBACK_TOP_K = 5
FEEDBACK_PER_SOURCE_K = 3

Language = Literal["en", "es"]


# Schemas
class SkillSuggestRequest(BaseModel):
    type: Literal["name", "description"]
    idea: str = Field(min_length=1)
    context: str = ""
    level: str = ""
    language: Language = "es"


class SuggestionsResponse(BaseModel):
    suggestions: list[str]


class DomainSkillSuggestRequest(BaseModel):
    domain_name: str = Field(min_length=1)
    domain_description: str = ""
    language: Language = "es"


class DomainSkillSuggestResponse(BaseModel):
    skills: list[SkillSuggestion]


class LevelTemplate(BaseModel):
    order: int
    label: str
    description: str = ""


class SkillLevelsSuggestRequest(BaseModel):
    skill_name: str = Field(min_length=1)
    skill_description: str = ""
    language: Language = "es"
    # Defaults to the caller's institution template
    levels: list[LevelTemplate] | None = None


class LevelDescription(BaseModel):
    order: int
    label: str
    description: str


class SkillLevelsSuggestResponse(BaseModel):
    levels: list[LevelDescription]


class CaseRequest(BaseModel):
    description: str = Field(min_length=1)
    difficulty_level: str = Field(min_length=1)
    educational_level: str = Field(min_length=1)
    evaluation_context: str = Field(min_length=1)
    skill_ids: list[int] = Field(min_length=1)
    output_language: Language = "es"


class CaseResponse(BaseModel):
    case_text: str


class CaseSolutionRequest(CaseRequest):
    case_text: str = Field(min_length=1)


class SourceReference(BaseModel):
    source_id: int
    title: str
    author: str | None
    page: int
    relevance: float


class CaseSolutionResponse(BaseModel):
    case_solution: str
    sources: list[SourceReference]
    skills_without_sources: list[int]


class QuestionsRequest(BaseModel):
    context: str = Field(min_length=1)
    main_scenario: str = Field(min_length=1)
    skill_ids: list[int] = Field(min_length=1)
    difficulty_level: str = Field(min_length=1)
    educational_level: str = Field(min_length=1)
    language: Language = "es"


class QuestionsResponse(BaseModel):
    questions: str


class RagFeedbackRequest(BaseModel):
    question: str = Field(min_length=1)
    student_response: str = Field(min_length=1)
    skill_id: int
    context: str | None = None
    language: Language = "en"


class RagFeedbackResponse(BaseModel):
    feedback: str
    sources: list[SourceReference]


class HealthResponse(BaseModel):
    configured: bool
    model: str
    embedding_model: str


def _reference(chunk: RetrievedChunk) -> SourceReference:
    return SourceReference(
        source_id=chunk.source_id,
        title=chunk.source_title,
        author=chunk.source_author,
        page=chunk.page,
        relevance=round(chunk.similarity, 4),
    )


async def _load_skills(db: AsyncSession, skill_ids: list[int], user: User) -> list[Skill]:
    """Skills with their domain, in request order; 404 on any the caller cannot see."""
    unique_ids = list(dict.fromkeys(skill_ids))
    result = await db.execute(
        select(Skill).where(Skill.id.in_(unique_ids)).options(selectinload(Skill.domain))
    )
    skills = {s.id: s for s in result.scalars().all()}
    for skill_id in unique_ids:
        skill = skills.get(skill_id)
        if skill is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Skill {skill_id} not found",
            )
        ensure_institution_access(user, skill.domain.institution_id, "Skill")
    return [skills[skill_id] for skill_id in unique_ids]


def _skill_dict(skill: Skill) -> dict:
    return {
        "id": skill.id,
        "name": skill.name,
        "description": skill.description,
        "domain_name": skill.domain.name if skill.domain else None,
    }


# Endpoints
@router.post("/skill-suggest", response_model=SuggestionsResponse)
async def skill_suggest(
    data: SkillSuggestRequest,
    current_user: StaffUser,
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    system_prompt, user_prompt = compile_skill_suggest_prompts(
        data.type, data.context, data.level, data.language, data.idea
    )
    content = await orchestrator.complete_text(system_prompt, user_prompt, max_output_tokens=300)
    return SuggestionsResponse(suggestions=parse_suggestion_lines(content))


@router.post("/domain-skill-suggest", response_model=DomainSkillSuggestResponse)
async def domain_skill_suggest(
    data: DomainSkillSuggestRequest,
    current_user: StaffUser,
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    prompt = compile_domain_skills_prompt(data.domain_name, data.domain_description, data.language)
    content = await orchestrator.complete_text(
        "You are an expert educational designer.", prompt, max_output_tokens=2000
    )
    skills = parse_domain_skill_suggestions(content)
    if not skills:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="The AI response could not be parsed into skills",
        )
    return DomainSkillSuggestResponse(skills=skills)


@router.post("/skill-levels-suggest", response_model=SkillLevelsSuggestResponse)
async def skill_levels_suggest(
    data: SkillLevelsSuggestRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    """One description per level; re-asked until the model returns the right count."""
    levels = data.levels
    if levels is None:
        institution_id = require_institution(current_user)
        result = await db.execute(
            select(SkillLevelSetting)
            .where(SkillLevelSetting.institution_id == institution_id)
            .order_by(SkillLevelSetting.order)
        )
        levels = [
            LevelTemplate(order=s.order, label=s.label, description=s.description)
            for s in result.scalars().all()
        ]
    if not levels:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No level settings configured for this institution",
        )

    levels = sorted(levels, key=lambda l: l.order)
    prompt = compile_skill_levels_prompt(data.skill_name, data.skill_description, levels, data.language)

    for attempt in range(1, LEVEL_SUGGEST_ATTEMPTS + 1):
        content = await orchestrator.complete_text(
            "You are an expert educational designer.", prompt, max_output_tokens=3000
        )
        descriptions = parse_level_descriptions(content)
        if len(descriptions) == len(levels):
            return SkillLevelsSuggestResponse(
                levels=[
                    LevelDescription(order=level.order, label=level.label, description=sanitize_text(text))
                    for level, text in zip(levels, descriptions)
                ]
            )
        logger.warning(
            "[AI] Level suggestion attempt %d/%d returned %d descriptions, expected %d",
            attempt,
            LEVEL_SUGGEST_ATTEMPTS,
            len(descriptions),
            len(levels),
        )

    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"The AI did not return {len(levels)} level descriptions",
    )


@router.post("/generate-case", response_model=CaseResponse)
async def generate_case(
    data: CaseRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    skills = await _load_skills(db, data.skill_ids, current_user)
    prompt = compile_case_prompt(
        data.description,
        data.difficulty_level,
        data.educational_level,
        data.evaluation_context,
        [_skill_dict(s) for s in skills],
        data.output_language,
    )
    content = await orchestrator.complete_text(
        case_designer_system_prompt(data.output_language), prompt, max_output_tokens=4000
    )
    return CaseResponse(case_text=sanitize_text(content))


@router.post("/generate-case-solution", response_model=CaseSolutionResponse)
async def generate_case_solution(
    data: CaseSolutionRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
    embedder: Embedder = Depends(get_embedder),
):
    """Reference solution grounded in the processed sources of each skill."""
    skills = await _load_skills(db, data.skill_ids, current_user)

    skill_contexts = []
    references: dict[tuple[int, int], SourceReference] = {}
    without_sources: list[int] = []
    for skill in skills:
        chunks = await retrieve_skill_context(
            db, embedder, skill.id, data.case_text, top_k=CASE_SOLUTION_CHUNKS_PER_SKILL
        )
        if not chunks:
            without_sources.append(skill.id)
        for chunk in chunks:
            key = (chunk.source_id, chunk.page)
            if key not in references or references[key].relevance < chunk.similarity:
                references[key] = _reference(chunk)
        skill_contexts.append({**_skill_dict(skill), "excerpts": [c.model_dump() for c in chunks]})

    prompt = compile_case_solution_prompt(
        data.case_text,
        data.description,
        data.difficulty_level,
        data.educational_level,
        data.evaluation_context,
        skill_contexts,
        data.output_language,
    )
    content = await orchestrator.complete_text(
        case_analyst_system_prompt(data.output_language), prompt, max_output_tokens=6000
    )

    logger.info(
        "[AI] Case solution grounded in %d passage(s); %d skill(s) without sources",
        len(references),
        len(without_sources),
    )
    return CaseSolutionResponse(
        case_solution=sanitize_text(content),
        sources=sorted(references.values(), key=lambda r: r.relevance, reverse=True),
        skills_without_sources=without_sources,
    )


@router.post("/generate-questions", response_model=QuestionsResponse)
async def generate_questions(
    data: QuestionsRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
):
    skills = await _load_skills(db, data.skill_ids, current_user)
    prompt = compile_questions_prompt(
        data.context,
        data.main_scenario,
        [_skill_dict(s) for s in skills],
        data.difficulty_level,
        data.educational_level,
        data.language,
    )
    content = await orchestrator.complete_text(
        case_designer_system_prompt(data.language), prompt, max_output_tokens=1000
    )
    return QuestionsResponse(questions=sanitize_text(content))


@router.post("/rag-feedback", response_model=RagFeedbackResponse)
async def rag_feedback(
    data: RagFeedbackRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
    embedder: Embedder = Depends(get_embedder),
):
    """Feedback on a student response, citing the skill's source material."""
    skill = (await _load_skills(db, [data.skill_id], current_user))[0]

    query_text = f"{data.question} {data.student_response}"
    chunks = await retrieve_skill_context(
        db,
        embedder,
        skill.id,
        query_text,
        per_source_k=FEEDBACK_PER_SOURCE_K,
        top_k=FEEDBACK_TOP_K,
    )
    if not chunks:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No processed sources with relevant content for this skill",
        )

    prompt = compile_rag_feedback_prompt(
        data.question,
        data.student_response,
        [c.model_dump() for c in chunks],
        data.context,
        data.language,
    )
    feedback = await orchestrator.complete_text(RAG_FEEDBACK_SYSTEM_PROMPT, prompt, max_output_tokens=1000)

    return RagFeedbackResponse(feedback=feedback.strip(), sources=[_reference(c) for c in chunks])


@router.get("/health", response_model=HealthResponse)
async def ai_health():
    settings = get_settings()
    return HealthResponse(
        configured=bool(settings.openai_api_key),
        model=settings.openai_model,
        embedding_model=settings.embedding_model,
    )
