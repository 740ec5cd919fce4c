"""Thin async wrapper around litellm.acompletion()."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import litellm
import structlog

log = structlog.get_logger("commitcaster.agent")

# ── LLM Response ─────────────────────────────────────────────────────────────


@dataclass
class LLMResponse:
    """Standardised response from a single LLM call."""

    content: str = ""
    stop_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


# ── LLM Client ───────────────────────────────────────────────────────────────


class LLMClient:
    """Async-only wrapper around ``litellm.acompletion()``.

    Usage::

        client = LLMClient(api_key=settings.ai_api_key, default_model=settings.ai_model)
        resp = await client.create(
            system="You analyze git diffs.",
            messages=[{"role": "user", "content": "..."}],
        )
    """

    def __init__(
        self,
        api_key: str | None = None,
        default_model: str = "gemini/gemini-1.5-flash",
        *,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self.default_model = default_model
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def resolve_model(self, model: str | None = None) -> str:
        return model or self.default_model

    async def create(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 512,
    ) -> LLMResponse:
        """Send a chat completion request and return a standardised response."""
        full_messages: list[dict[str, Any]] = [
            {"role": "system", "content": system},
            *messages,
        ]
        resolved = self.resolve_model(model)

        kwargs: dict[str, Any] = {
            "model": resolved,
            "messages": full_messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": self._timeout,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key

        t0 = time.monotonic()
        raw = await litellm.acompletion(**kwargs)
        latency_ms = int((time.monotonic() - t0) * 1000)

        choice = raw.choices[0]
        usage = raw.usage or litellm.Usage()

        resp = LLMResponse(
            content=choice.message.content or "",
            stop_reason=choice.finish_reason or "",
            input_tokens=usage.prompt_tokens or 0,
            output_tokens=usage.completion_tokens or 0,
            latency_ms=latency_ms,
        )
        log.debug(
            "llm.completed",
            model=resolved,
            input_tokens=resp.input_tokens,
            output_tokens=resp.output_tokens,
            latency_ms=latency_ms,
        )
        return resp
