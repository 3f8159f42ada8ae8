"""
Grading Service

Checks the grader's skill results against the assessment and turns them
into Result rows. A result's grade is the ``standard`` of the chosen level;
an attempt's final grade is the mean of its result grades.
"""

import logging
from datetime import datetime, timedelta

from app.models.attempt import Attempt, AttemptStatus
from app.models.result import Result
from app.models.skill import Skill, SkillLevel
from app.services.llm.models import SkillResult

logger = logging.getLogger(__name__)


class GradingError(ValueError):
    """The grader named skills or levels that do not fit the assessment."""


def compute_final_grade(grades: list[float]) -> float:
    if not grades:
        return 0.0
    return round(sum(grades) / len(grades), 2)


def resolve_skill_results(
    skill_results: list[SkillResult], skills: list[Skill]
) -> list[tuple[Skill, SkillLevel, str]]:
    """
    Match each result to an assessment skill and one of that skill's levels.

    Exactly one result per skill is required.

    Raises:
        GradingError: On an unknown skill, a level of another skill,
            a duplicate skill or a missing skill
    """
    skills_by_id = {skill.id: skill for skill in skills}
    resolved: dict[int, tuple[Skill, SkillLevel, str]] = {}

    for item in skill_results:
        skill = skills_by_id.get(item.skillId)
        if skill is None:
            raise GradingError(f"Skill {item.skillId} is not part of this assessment")

        level = next((lvl for lvl in skill.levels if lvl.id == item.skillLevelId), None)
        if level is None:
            raise GradingError(f"Level {item.skillLevelId} does not belong to skill {skill.id}")

        if skill.id in resolved:
            raise GradingError(f"Skill {skill.id} was graded more than once")
        resolved[skill.id] = (skill, level, item.feedback)

    missing = [skill_id for skill_id in skills_by_id if skill_id not in resolved]
    if missing:
        raise GradingError(f"No result for skill(s) {', '.join(map(str, missing))}")

    # Keep the assessment's skill order
    return [resolved[skill.id] for skill in skills]


def complete_attempt(
    attempt: Attempt,
    graded: list[tuple[Skill, SkillLevel, str]],
    now: datetime | None = None,
) -> list[Result]:
    """Build Result rows for the attempt and close it. Caller adds them to the session."""
    results = [
        Result(
            attempt_id=attempt.id,
            skill_id=skill.id,
            skill_level_id=level.id,
            grade=level.standard,
            feedback=feedback,
        )
        for skill, level, feedback in graded
    ]
    attempt.final_grade = compute_final_grade([r.grade for r in results])
    attempt.status = AttemptStatus.COMPLETED
    attempt.completed_at = now or datetime.utcnow()

    logger.info(
        "[Grading] Attempt %s completed: final_grade=%.2f over %d skill(s)",
        attempt.id,
        attempt.final_grade,
        len(results),
    )
    return results


def dispute_deadline(completed_at: datetime | None, dispute_period: int) -> datetime | None:
    if completed_at is None:
        return None
    return completed_at + timedelta(days=dispute_period)
