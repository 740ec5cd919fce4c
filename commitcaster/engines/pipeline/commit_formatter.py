"""Commit message parsing and post-length helpers."""

from __future__ import annotations

import re
from typing import Any

MAX_POST_LENGTH = 280
URL_WEIGHT = 23

_CONVENTIONAL_RE = re.compile(r"^(\w+)(\(.+\))?:\s*(.+)$")
_URL_RE = re.compile(r"https?://[^\s]+|www\.[^\s]+", re.IGNORECASE)


def parse_commit_message(message: str) -> dict[str, str | None]:
    """Split a conventional-commit message into type, scope, subject and body.

    Non-conventional messages get ``type=None`` and the first line as subject.
    """
    lines = (message or "").split("\n")
    first_line = lines[0]
    body = "\n".join(lines[1:]).strip()

    match = _CONVENTIONAL_RE.match(first_line)
    if match:
        scope = match.group(2)
        return {
            "type": match.group(1),
            "scope": scope.strip("()") if scope else None,
            "subject": match.group(3),
            "body": body,
        }
    return {"type": None, "scope": None, "subject": first_line, "body": body}


def truncate_text(text: str, max_length: int) -> str:
    """Cut *text* to *max_length* at a word boundary and append ``...``."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space] + "..."
    return truncated + "..."


def extract_urls(text: str) -> list[str]:
    return _URL_RE.findall(text or "")


def calculate_post_length(text: str) -> int:
    """Length as the social net counts it: every URL weighs 23 characters."""
    length = len(text)
    for url in extract_urls(text):
        length = length - len(url) + URL_WEIGHT
    return length


def fit_post_length(text: str, max_length: int = MAX_POST_LENGTH) -> str:
    """Shorten *text* until :func:`calculate_post_length` is within *max_length*."""
    if calculate_post_length(text) <= max_length:
        return text
    limit = max_length - 3
    while limit > 0:
        candidate = truncate_text(text, limit)
        if calculate_post_length(candidate) <= max_length:
            return candidate
        limit -= 10
    return text[: max_length - 3] + "..."


def format_commit(
    commit: dict[str, Any], repository: dict[str, Any], pusher: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Flatten a webhook commit into the shape the template engine consumes."""
    parsed = parse_commit_message(commit.get("message") or "")
    full_sha = commit.get("id") or ""
    added = list(commit.get("added") or [])
    modified = list(commit.get("modified") or [])
    removed = list(commit.get("removed") or [])
    author = commit.get("author") or {}
    pusher_name = (pusher or {}).get("name")

    return {
        "sha": full_sha[:7],
        "full_sha": full_sha,
        "subject": parsed["subject"],
        "message": commit.get("message") or "",
        "type": parsed["type"],
        "scope": parsed["scope"],
        "author": pusher_name or author.get("username") or author.get("name") or "",
        "author_email": author.get("email"),
        "repo_name": repository.get("name"),
        "repo_full_name": repository.get("full_name"),
        "url": commit.get("url"),
        "timestamp": commit.get("timestamp"),
        "branch": commit.get("branch"),
        "added": added,
        "modified": modified,
        "removed": removed,
        "files_changed": len(added) + len(modified) + len(removed),
    }


def branch_from_ref(ref: str | None) -> str | None:
    """``refs/heads/main`` -> ``main``."""
    if not ref:
        return None
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref
