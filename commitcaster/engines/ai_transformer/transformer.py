"""AITransformer — the two model calls of the pipeline.

Stage A turns a truncated diff into 2-4 factual bullets. Stage B turns a
fully prepared prompt into the post body. Neither stage knows about tenant
templates; callers hand in finished prompt text.
"""

from __future__ import annotations

import litellm
import structlog

from commitcaster.agent.llm_client import LLMClient
from commitcaster.agent.postprocess import clean_model_output
from commitcaster.agent.prompts.changelog import CHANGELOG_SYSTEM_PROMPT
from commitcaster.agent.prompts.diff_analysis import (
    DIFF_ANALYSIS_SYSTEM_PROMPT,
    build_diff_analysis_prompt,
)
from commitcaster.engines.diff_fetcher.fetcher import CommitDiff
from commitcaster.engines.work_queue.backoff import is_rate_limit_error
from commitcaster.services import RateLimitedError

log = structlog.get_logger("commitcaster.engine")


def _is_throttle(exc: Exception) -> bool:
    return isinstance(exc, litellm.RateLimitError) or is_rate_limit_error(exc)


class AITransformer:
    def __init__(
        self,
        llm: LLMClient,
        *,
        analysis_max_tokens: int = 256,
        changelog_max_tokens: int = 512,
    ) -> None:
        self._llm = llm
        self._analysis_max_tokens = analysis_max_tokens
        self._changelog_max_tokens = changelog_max_tokens

    @property
    def available(self) -> bool:
        return self._llm.configured

    async def analyze_diff(self, diff: CommitDiff, commit_message: str, repo_name: str) -> str | None:
        """Stage A. Returns None when there is no diff or the model fails.

        Rate-limit failures are re-raised as :class:`RateLimitedError` so the
        queue can back off; every other failure degrades to None.
        """
        prompt = build_diff_analysis_prompt(
            diff.diff,
            [f.to_dict() for f in diff.files],
            diff.stats,
            commit_message,
            repo_name,
        )
        if prompt is None:
            return None
        try:
            resp = await self._llm.create(
                system=DIFF_ANALYSIS_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.2,
                max_tokens=self._analysis_max_tokens,
            )
        except Exception as exc:
            if _is_throttle(exc):
                raise RateLimitedError(str(exc)) from exc
            log.warning("ai.diff_analysis_failed", repo=repo_name, error=str(exc))
            return None

        summary = clean_model_output(resp.content)
        if not summary:
            log.warning("ai.diff_analysis_empty", repo=repo_name)
            return None
        log.info("ai.diff_analyzed", repo=repo_name, chars=len(summary), latency_ms=resp.latency_ms)
        return summary

    async def render_changelog(self, prompt: str) -> str:
        """Stage B. Errors propagate to the queue's retry policy."""
        try:
            resp = await self._llm.create(
                system=CHANGELOG_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.7,
                max_tokens=self._changelog_max_tokens,
            )
        except Exception as exc:
            if _is_throttle(exc) and not isinstance(exc, RateLimitedError):
                raise RateLimitedError(str(exc)) from exc
            raise
        text = clean_model_output(resp.content)
        log.info("ai.changelog_rendered", chars=len(text), latency_ms=resp.latency_ms)
        return text
