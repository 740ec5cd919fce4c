"""PendingAuthStore — in-flight OAuth authorizations keyed by ``state``.

Entries are removed on callback and expire after a TTL; :meth:`sweep` is
driven by the scheduler so abandoned flows do not accumulate.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

log = structlog.get_logger("commitcaster.oauth")


@dataclass
class PendingAuth:
    provider: str
    created_at: float
    code_verifier: str | None = None
    tenant_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class PendingAuthStore:
    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, PendingAuth] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def put(
        self,
        state: str,
        provider: str,
        *,
        code_verifier: str | None = None,
        tenant_id: str | None = None,
        **extra: Any,
    ) -> PendingAuth:
        entry = PendingAuth(
            provider=provider,
            created_at=self._clock(),
            code_verifier=code_verifier,
            tenant_id=tenant_id,
            extra=extra,
        )
        self._entries[state] = entry
        return entry

    def pop(self, state: str | None, provider: str) -> PendingAuth | None:
        """Remove and return the entry for *state*; None if unknown, expired or for another provider."""
        if not state:
            return None
        entry = self._entries.pop(state, None)
        if entry is None:
            return None
        if entry.provider != provider:
            log.warning("oauth.state_provider_mismatch", expected=provider, actual=entry.provider)
            return None
        if self._clock() - entry.created_at > self._ttl:
            log.info("oauth.state_expired", provider=provider)
            return None
        return entry

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        cutoff = self._clock() - self._ttl
        expired = [state for state, entry in self._entries.items() if entry.created_at < cutoff]
        for state in expired:
            del self._entries[state]
        if expired:
            log.info("oauth.pending_swept", removed=len(expired), remaining=len(self._entries))
        return len(expired)
