"""
Model Registry

Chat models the assessment engine may use, keyed by the id staff see in
the model picker. Each entry names the provider class that talks to it.
"""

import logging

from app.core.config import get_settings
from app.services.llm.base import LLMProvider

logger = logging.getLogger(__name__)


# Entry fields:
#   display_name  label for the model picker
#   provider      LLMProvider type string, see _create_provider
#   api_model     model string sent to the provider API
#   tier          pricing tier shown next to the label

MODEL_REGISTRY: dict[str, dict] = {
    "gpt-5.2": {
        "display_name": "GPT-5.2 (Premium)",
        "provider": "openai_responses",
        "api_model": "gpt-5.2",
        "tier": "premium",
        "description": "Strongest grading and case solutions; slowest to answer.",
    },
    "gpt-5-mini": {
        "display_name": "GPT-5 Mini",
        "provider": "openai_responses",
        "api_model": "gpt-5-mini",
        "tier": "standard",
        "description": "Balanced reasoning model for case and question authoring.",
    },
    "gpt-4o": {
        "display_name": "GPT-4o",
        "provider": "openai_chat",
        "api_model": "gpt-4o",
        "tier": "standard",
        "description": "Fast and consistent. Recommended for student conversations.",
    },
    "gpt-4o-mini": {
        "display_name": "GPT-4o Mini (Budget)",
        "provider": "openai_chat",
        "api_model": "gpt-4o-mini",
        "tier": "budget",
        "description": "Cheapest option. Good enough for name and level suggestions.",
    },
}

DEFAULT_MODEL_ID = "gpt-4o"

_provider_instances: dict[str, LLMProvider] = {}


def _create_provider(provider_type: str) -> LLMProvider:
    if provider_type == "openai_responses":
        from app.services.llm.openai_responses import OpenAIResponsesProvider
        return OpenAIResponsesProvider()
    if provider_type == "openai_chat":
        from app.services.llm.openai_chat import OpenAIChatProvider
        return OpenAIChatProvider()
    raise ValueError(f"Unknown provider type: {provider_type}")


def resolve_model_id(model_id: str | None = None) -> str:
    """
    Pick the registry id to use for a call.

    An explicit id wins, then OPENAI_MODEL from the environment, then
    DEFAULT_MODEL_ID. Ids missing from the registry are skipped with a
    warning rather than failing the request.
    """
    for candidate in (model_id, get_settings().openai_model):
        if not candidate:
            continue
        if candidate in MODEL_REGISTRY:
            return candidate
        logger.warning("[LLM] Unknown model %r, falling back", candidate)
    return DEFAULT_MODEL_ID


def get_provider(model_id: str) -> tuple[LLMProvider, str]:
    """Return the shared provider instance and API model string for ``model_id``."""
    if model_id not in MODEL_REGISTRY:
        raise ValueError(
            f"Unknown model: {model_id}. Available models: {', '.join(MODEL_REGISTRY)}"
        )

    entry = MODEL_REGISTRY[model_id]
    provider_type = entry["provider"]
    if provider_type not in _provider_instances:
        _provider_instances[provider_type] = _create_provider(provider_type)
    return _provider_instances[provider_type], entry["api_model"]


def list_models() -> list[dict]:
    default_id = resolve_model_id()
    return [
        {
            "id": model_id,
            "display_name": entry["display_name"],
            "tier": entry["tier"],
            "description": entry.get("description", ""),
            "is_default": model_id == default_id,
        }
        for model_id, entry in MODEL_REGISTRY.items()
    ]
