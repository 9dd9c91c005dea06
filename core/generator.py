"""
Text Generation — LLM-backed reminder wording.

Supports Anthropic and OpenAI providers with several API keys: a failing key
is skipped and the next one tried, so one exhausted quota does not silence
generation. Callers must treat CollaboratorError as non-fatal.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

from config.settings import LLMConfig

logger = structlog.get_logger()


class CollaboratorError(Exception):
    """Text generation failed or is unavailable."""


class TextGenerator(abc.ABC):
    @abc.abstractmethod
    async def generate(self, prompt: str) -> str:
        ...


class LLMTextGenerator(TextGenerator):
    """
    Generates short texts using Claude or OpenAI.
    Clients are created lazily, one per API key.
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self._clients: dict[int, Any] = {}
        self._current = 0

    @property
    def is_openai(self) -> bool:
        return self.config.provider == "openai"

    @property
    def available(self) -> bool:
        return bool(self.config.api_keys)

    def _get_client(self, index: int):
        if index not in self._clients:
            api_key = self.config.api_keys[index]
            if self.is_openai:
                from openai import AsyncOpenAI
                self._clients[index] = AsyncOpenAI(api_key=api_key)
            else:
                import anthropic
                self._clients[index] = anthropic.AsyncAnthropic(api_key=api_key)
            logger.info("llm_client_initialized", provider=self.config.provider,
                        model=self.config.model, key_index=index)
        return self._clients[index]

    async def _call_llm(self, client, prompt: str) -> str:
        """Unified LLM call that handles both Anthropic and OpenAI APIs."""
        if self.is_openai:
            response = await client.chat.completions.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.choices[0].message.content or ""
        response = await client.messages.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    async def generate(self, prompt: str) -> str:
        if not self.available:
            raise CollaboratorError("No LLM API key configured")

        keys = len(self.config.api_keys)
        last_error: Optional[Exception] = None
        for attempt in range(keys):
            index = (self._current + attempt) % keys
            try:
                text = (await self._call_llm(self._get_client(index), prompt)).strip()
            except Exception as e:
                last_error = e
                logger.warning("llm_key_failed", key_index=index, error=str(e))
                continue
            if not text:
                last_error = CollaboratorError("Empty completion")
                continue
            if index != self._current:
                logger.info("llm_key_switched", old=self._current, new=index)
                self._current = index
            return text

        raise CollaboratorError(f"All {keys} LLM key(s) failed: {last_error}")
