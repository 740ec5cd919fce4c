"""Diff fetcher engine — commit patches from the code host."""

from commitcaster.engines.diff_fetcher.fetcher import CommitDiff, DiffFetcher, DiffFile, build_combined_diff
from commitcaster.engines.diff_fetcher.github_client import GitHubClient
from commitcaster.engines.diff_fetcher.summary import build_file_based_summary, should_skip_diff_analysis

__all__ = [
    "CommitDiff",
    "DiffFetcher",
    "DiffFile",
    "GitHubClient",
    "build_combined_diff",
    "build_file_based_summary",
    "should_skip_diff_analysis",
]
