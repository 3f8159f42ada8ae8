"""
OpenAI Chat Completions API Provider

Serves GPT-4o class models through client.chat.completions.create();
the reply text lives in response.choices[0].message.content.
"""

import logging

from openai import AsyncOpenAI, OpenAIError

from app.core.config import get_settings
from app.services.llm.base import LLMError, LLMProvider

logger = logging.getLogger(__name__)


class OpenAIChatProvider(LLMProvider):
    provider_name = "openai_chat"

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
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                max_completion_tokens=max_output_tokens,
                temperature=temperature,
            )
        except OpenAIError as e:
            logger.error("[LLM] chat.completions failed for %s: %s", model, e)
            raise LLMError(f"OpenAI API error: {e}") from e

        if response.usage is not None:
            logger.debug(
                "[LLM] %s tokens in=%d out=%d",
                model,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )

        choice = response.choices[0]
        if not choice.message.content:
            raise LLMError(f"Empty reply from {model} (finish_reason={choice.finish_reason})")
        return choice.message.content
