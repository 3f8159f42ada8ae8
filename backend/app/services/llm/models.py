"""
Pydantic response models for structured LLM output.

Field names mirror the JSON keys the prompts ask the model to emit,
so they are camelCase where the prompt is.
"""

from pydantic import BaseModel


class SkillResult(BaseModel):
    skillId: int
    skillLevelId: int
    feedback: str = ""


class EvaluationResponse(BaseModel):
    """One grading turn of an assessment conversation."""

    canDetermineLevel: bool
    message: str
    skillResults: list[SkillResult] = []


class SkillSuggestion(BaseModel):
    name: str
    description: str
