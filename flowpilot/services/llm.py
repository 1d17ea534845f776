from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from ..core.config import Settings, get_settings
from ..core.logging import get_logger

logger = get_logger(name=__name__)

LLM_BASE_DELAY = 1.0  # seconds
LLM_MAX_DELAY = 10.0  # seconds

# Marker for unavailable LLM responses
LLM_UNAVAILABLE_MARKER = "[LLM_UNAVAILABLE]"


class LLMStreamError(RuntimeError):
    """Raised when a streamed completion breaks off."""


def is_llm_unavailable(response: str) -> bool:
    return response.startswith(LLM_UNAVAILABLE_MARKER)


def _build_base_url(host: str, port: int) -> str:
    trimmed = host.rstrip("/")
    if ":" in trimmed.rsplit("/", maxsplit=1)[-1]:
        return trimmed
    return f"{trimmed}:{port}"


def _messages_from_text(prompt: str, system_prompt: str | None = None) -> Sequence[BaseMessage]:
    messages: list[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=prompt))
    return messages


@dataclass
class LLMService:
    """Thin LangChain-based client for interacting with local Ollama models."""

    settings: Settings
    _client: Any
    model: str
    default_system_prompt: str = "You are a precise workflow assistant. Answer exactly in the requested format."
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _client_cache: ClassVar[dict[str, Any]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        model: str | None = None,
        client: Any | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> "LLMService":
        resolved = settings or get_settings()
        model_name = model or resolved.oracle.model
        if client is None:
            cache_key = f"{resolved.oracle.host}:{resolved.oracle.port}:{model_name}"
            cached = cls._client_cache.get(cache_key)
            if cached is None:
                base_url = _build_base_url(resolved.oracle.host, resolved.oracle.port)
                cached = ChatOllama(model=model_name, base_url=base_url, temperature=resolved.oracle.temperature)
                cls._client_cache[cache_key] = cached
            client = cached
        return cls(settings=resolved, _client=client, model=model_name, sleep=sleep or asyncio.sleep)

    async def generate(self, prompt: str, *, system_prompt: str | None = None) -> str:
        """Generate text with retry; returns a marker string instead of raising when the model is unreachable."""
        messages = _messages_from_text(prompt, system_prompt or self.default_system_prompt)
        attempts = self.settings.oracle.max_retries
        timeout = self.settings.oracle.request_timeout_seconds
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=LLM_BASE_DELAY, max=LLM_MAX_DELAY),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await asyncio.wait_for(self._client.ainvoke(messages), timeout=timeout)
        except Exception as exc:
            logger.error(
                "llm_generation_failed",
                error=str(exc) or type(exc).__name__,
                model=self.model,
                attempts=attempts,
            )
            return f"{LLM_UNAVAILABLE_MARKER} LLM generation failed after {attempts} attempts."
        return _extract_content(result)

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome is not None else None
        logger.warning(
            "llm_generation_retry",
            attempt=state.attempt_number,
            max_attempts=self.settings.oracle.max_retries,
            error=(str(error) or type(error).__name__) if error else None,
            model=self.model,
        )

    async def stream(self, prompt: str, *, system_prompt: str | None = None) -> AsyncIterator[str]:
        """Yield completion text chunk by chunk; raises ``LLMStreamError`` if the stream breaks."""
        messages = _messages_from_text(prompt, system_prompt or self.default_system_prompt)
        try:
            async for chunk in self._client.astream(messages):
                text = _extract_content(chunk)
                if text:
                    yield text
        except Exception as exc:
            logger.warning("llm_stream_failed", error=str(exc), model=self.model)
            raise LLMStreamError(str(exc)) from exc


def _extract_content(result: Any) -> str:
    content = result.content if isinstance(result, AIMessage) or hasattr(result, "content") else result
    if isinstance(content, list):
        return " ".join(str(item) for item in content)
    return str(content)


__all__ = ["LLMService", "LLMStreamError", "LLM_UNAVAILABLE_MARKER", "is_llm_unavailable"]
