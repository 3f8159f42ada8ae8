"""
LLM Orchestrator

Shared logic for all providers:
- Plain text completions
- JSON extraction from LLM responses
- Retry with JSON-fix on parse failure
- Parsing raw text into pydantic response models

The orchestrator delegates the actual API call to the selected provider,
keeping provider implementations clean and focused on API translation.
"""

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from app.services.llm.base import LLMOutputError, LLMProvider
from app.services.llm.registry import get_provider, resolve_model_id

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class LLMOrchestrator:
    """Orchestrates LLM calls with shared parsing and retry logic."""

    def __init__(self, provider: LLMProvider | None = None):
        # A fixed provider bypasses the registry for every model id
        self._provider = provider

    def _resolve(self, model_id: str | None) -> tuple[LLMProvider, str, str]:
        model_id = resolve_model_id(model_id)
        if self._provider is not None:
            return self._provider, model_id, model_id
        provider, api_model = get_provider(model_id)
        return provider, api_model, model_id

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        model_id: str | None = None,
        max_output_tokens: int = 2000,
        temperature: float = 0.7,
    ) -> str:
        """Single-turn completion returning the raw text."""
        provider, api_model, model_id = self._resolve(model_id)

        content = await provider.chat(
            system_prompt=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            model=api_model,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        )

        logger.info("[LLM] model=%s provider=%s chars=%d", model_id, provider.provider_name, len(content))
        return content

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        model_id: str | None = None,
        max_output_tokens: int = 4000,
        temperature: float = 0.3,
    ) -> T:
        """
        Completion parsed into ``response_model``.

        One repair round-trip is attempted when the first answer is not
        valid JSON for the model.

        Raises:
            LLMOutputError: If neither answer could be parsed
            LLMError: If the provider call itself fails
        """
        provider, api_model, model_id = self._resolve(model_id)

        content = await provider.chat(
            system_prompt=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            model=api_model,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        )

        logger.info("[LLM] model=%s provider=%s", model_id, provider.provider_name)
        logger.debug("[LLM] Content: %s...", content[:200])

        try:
            return self._parse(content, response_model)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("[LLM] Invalid JSON from model, retrying with fix prompt: %s", e)
            return await self._retry_with_json_fix(
                provider, api_model, system_prompt, user_prompt, content, str(e), response_model
            )

    def _parse(self, content: str, response_model: type[T]) -> T:
        data = json.loads(self._extract_json(content))
        return response_model.model_validate(data)

    def _extract_json(self, content: str) -> str:
        """Extract JSON from response, handling markdown code blocks."""
        # Try to find JSON in code blocks
        code_block_pattern = r"```(?:json)?\s*([\s\S]*?)```"
        matches = re.findall(code_block_pattern, content)
        if matches:
            return matches[0].strip()

        # Try to find raw JSON object
        json_pattern = r"\{[\s\S]*\}"
        matches = re.findall(json_pattern, content)
        if matches:
            # Return the longest match (most likely the full JSON)
            return max(matches, key=len)

        # Return as-is and let JSON parser handle it
        return content.strip()

    async def _retry_with_json_fix(
        self,
        provider: LLMProvider,
        api_model: str,
        system_prompt: str,
        user_prompt: str,
        previous_response: str,
        error: str,
        response_model: type[T],
    ) -> T:
        """Retry with a fix prompt when JSON parsing fails."""
        fix_prompt = (
            f"Your previous response was not valid JSON. The error was: {error}\n\n"
            f"Please fix the JSON and respond with ONLY valid JSON, no markdown code blocks or explanation.\n"
            f"Your previous response was:\n{previous_response[:500]}...\n\n"
            f"Respond with the corrected JSON only."
        )

        messages = [
            {"role": "user", "content": user_prompt},
            {"role": "assistant", "content": previous_response},
            {"role": "user", "content": fix_prompt},
        ]

        content = await provider.chat(
            system_prompt=system_prompt,
            messages=messages,
            model=api_model,
            max_output_tokens=4000,
            temperature=0.1,
        )

        logger.debug("[LLM] Retry content: %s...", content[:200])
        try:
            return self._parse(content, response_model)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("[LLM] Model output still unparseable after retry: %s", e)
            raise LLMOutputError(str(e)) from e


# ── Singleton ─────────────────────────────────────────────────────────────────

_orchestrator: LLMOrchestrator | None = None


def get_orchestrator() -> LLMOrchestrator:
    """Get or create the LLM orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = LLMOrchestrator()
    return _orchestrator
