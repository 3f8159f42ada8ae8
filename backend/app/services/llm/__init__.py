"""
LLM Provider Abstraction Layer

Provides a unified interface for the hosted chat models with a model
registry and shared orchestration logic (text and JSON completions).
"""

from app.services.llm.base import LLMError, LLMOutputError, LLMProvider
from app.services.llm.orchestrator import LLMOrchestrator, get_orchestrator
from app.services.llm.registry import MODEL_REGISTRY, get_provider, list_models, resolve_model_id
from app.services.llm.models import EvaluationResponse, SkillResult, SkillSuggestion

__all__ = [
    "LLMError",
    "LLMOutputError",
    "LLMProvider",
    "LLMOrchestrator",
    "get_orchestrator",
    "MODEL_REGISTRY",
    "get_provider",
    "list_models",
    "resolve_model_id",
    "EvaluationResponse",
    "SkillResult",
    "SkillSuggestion",
]
