"""
Abstract base class for all LLM providers.

Each provider implements the API-specific translation layer.
JSON extraction, parsing, and retry logic are handled by the orchestrator.
"""

from abc import ABC, abstractmethod


class LLMError(Exception):
    """The hosted model could not be reached or returned nothing."""


class LLMOutputError(ValueError):
    """The model answered, but the answer could not be parsed."""


class LLMProvider(ABC):
    """Abstract base class for all LLM providers."""

    provider_name: str = "base"

    @abstractmethod
    async def chat(
        self,
        system_prompt: str,
        messages: list[dict],
        model: str,
        max_output_tokens: int = 2000,
        temperature: float = 0.7,
    ) -> str:
        """
        Text-only chat completion.

        Args:
            system_prompt: The system prompt
            messages: List of message dicts with "role" and "content"
            model: The API model identifier
            max_output_tokens: Maximum tokens in the response
            temperature: Sampling temperature

        Returns:
            Raw text response from the LLM

        Raises:
            LLMError: If the API call fails or returns empty content
        """
        ...
