"""Commit pipeline engine — formatting and the queued per-commit stages."""

from commitcaster.engines.pipeline.commit_formatter import format_commit, parse_commit_message
from commitcaster.engines.pipeline.tasks import (
    CHANGELOG_RENDER,
    DIFF_ANALYSIS,
    POST_DISPATCH,
    CommitPipeline,
    queue_id_for,
)

__all__ = [
    "CHANGELOG_RENDER",
    "DIFF_ANALYSIS",
    "POST_DISPATCH",
    "CommitPipeline",
    "format_commit",
    "parse_commit_message",
    "queue_id_for",
]
