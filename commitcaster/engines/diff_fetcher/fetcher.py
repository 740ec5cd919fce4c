"""DiffFetcher — commit patches from the code host, truncated for the AI stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from commitcaster.engines.diff_fetcher.github_client import GitHubClient

log = structlog.get_logger("commitcaster.engine")

MAX_DIFF_SIZE = 4000
MAX_FILES_TO_ANALYZE = 10
MIN_REMAINING_FOR_FILE = 100
TRUNCATION_MARKER = "\n... (truncated)"


@dataclass
class DiffFile:
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "status": self.status,
            "additions": self.additions,
            "deletions": self.deletions,
            "changes": self.changes,
        }


@dataclass
class CommitDiff:
    diff: str
    files: list[DiffFile] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)


def build_combined_diff(files: list[DiffFile], max_size: int = MAX_DIFF_SIZE) -> str:
    """Concatenate per-file patches under a ``--- file (status: +a/-d) ---`` header.

    A file is included only while more than 100 characters of budget remain;
    its patch is cut to fit and marked ``... (truncated)``. The result, join
    separators and markers included, never exceeds *max_size*.
    """
    parts: list[str] = []
    total = 0
    for f in files:
        if not f.patch or total >= max_size:
            continue
        sep = 1 if parts else 0
        header = f"\n--- {f.filename} ({f.status}: +{f.additions}/-{f.deletions}) ---\n"
        remaining = max_size - total - sep - len(header)
        if remaining <= MIN_REMAINING_FOR_FILE:
            continue
        patch = f.patch
        if len(patch) > remaining:
            patch = patch[: remaining - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        parts.append(header + patch)
        total += sep + len(header) + len(patch)
    return "\n".join(parts)


class DiffFetcher:
    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    async def fetch(self, repo_full_name: str, sha: str, token: str | None = None) -> CommitDiff:
        """Fetch *sha* and return at most 10 files and 4000 characters of patch text.

        Anonymous when *token* is None. Errors from :class:`GitHubClient`
        propagate unchanged.
        """
        data = await self._client.get_commit(repo_full_name, sha, token)
        files = [
            DiffFile(
                filename=raw.get("filename", ""),
                status=raw.get("status", "modified"),
                additions=raw.get("additions") or 0,
                deletions=raw.get("deletions") or 0,
                changes=raw.get("changes") or 0,
                patch=raw.get("patch"),
            )
            for raw in (data.get("files") or [])[:MAX_FILES_TO_ANALYZE]
        ]
        raw_stats = data.get("stats") or {}
        stats = {
            "total": raw_stats.get("total") or 0,
            "additions": raw_stats.get("additions") or 0,
            "deletions": raw_stats.get("deletions") or 0,
            "files_changed": len(files),
        }
        diff = build_combined_diff(files)
        log.info(
            "diff.fetched",
            repo=repo_full_name,
            sha=sha[:7],
            files=len(files),
            additions=stats["additions"],
            deletions=stats["deletions"],
            authenticated=token is not None,
        )
        return CommitDiff(diff=diff, files=files, stats=stats)
