"""
OpenAI Responses API Provider

Serves GPT-5.x reasoning models through client.responses.create(), which
takes ``input`` instead of ``messages`` and exposes ``output_text``.
These models reject a temperature, so it is accepted and dropped.
"""

import logging

from openai import AsyncOpenAI, OpenAIError

from app.core.config import get_settings
from app.services.llm.base import LLMError, LLMProvider

logger = logging.getLogger(__name__)


class OpenAIResponsesProvider(LLMProvider):
    provider_name = "openai_responses"

    def __init__(self):
        settings = get_settings()
        self.client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout_seconds,
            max_retries=settings.openai_max_retries,
        )

    async def chat(
        self,
        system_prompt: str,
        messages: list[dict],
        model: str,
        max_output_tokens: int = 2000,
        temperature: float = 0.7,
    ) -> str:
        try:
            response = await self.client.responses.create(
                model=model,
                instructions=system_prompt,
                input=messages,
                max_output_tokens=max_output_tokens,
            )
        except OpenAIError as e:
            logger.error("[LLM] responses.create failed for %s: %s", model, e)
            raise LLMError(f"OpenAI API error: {e}") from e

        if response.usage is not None:
            logger.debug(
                "[LLM] %s tokens in=%d out=%d",
                model,
                response.usage.input_tokens,
                response.usage.output_tokens,
            )

        if not response.output_text:
            raise LLMError(f"Empty reply from {model} (status={response.status})")
        return response.output_text
