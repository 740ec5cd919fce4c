"""Deterministic commit summaries used when the diff-analysis stage is skipped or fails."""

from __future__ import annotations

import re
from typing import Any

ASSET_RE = re.compile(r"\.(png|jpg|jpeg|gif|svg|ico|webp|woff|woff2|ttf|eot|mp4|mp3|pdf)$", re.IGNORECASE)
IMAGE_RE = re.compile(r"\.(png|jpg|jpeg|gif|svg|ico|webp)$", re.IGNORECASE)

MAX_FILES_FOR_ANALYSIS = 50


def _all_files(commit: dict[str, Any]) -> tuple[list[str], list[str], list[str]]:
    return (
        list(commit.get("added") or []),
        list(commit.get("modified") or []),
        list(commit.get("removed") or []),
    )


def categorize_files(files: list[str]) -> dict[str, list[str]]:
    """Group paths by the area they most likely belong to. A path may land in several groups."""
    return {
        "components": [f for f in files if "component" in f or "Component" in f],
        "pages": [f for f in files if "page" in f or "Page" in f or "/pages/" in f],
        "styles": [f for f in files if f.endswith((".css", ".scss")) or "style" in f],
        "api": [f for f in files if "/api/" in f or "api." in f],
        "config": [f for f in files if "config" in f or ".json" in f or ".env" in f],
        "images": [f for f in files if IMAGE_RE.search(f)],
        "tests": [f for f in files if "test" in f or "spec" in f],
    }


def build_file_based_summary(commit: dict[str, Any]) -> str:
    """One-line summary built from file names only, e.g. ``added 2 component(s), updated styles``."""
    added, modified, removed = _all_files(commit)
    patterns = categorize_files([*added, *modified, *removed])
    parts: list[str] = []

    if added:
        if patterns["components"]:
            parts.append(f"added {len(patterns['components'])} component(s)")
        elif patterns["pages"]:
            parts.append(f"added {len(patterns['pages'])} page(s)")
        elif patterns["images"]:
            parts.append(f"added {len(patterns['images'])} image(s)")
        else:
            parts.append(f"added {len(added)} file(s)")

    if modified:
        modified_set = set(modified)
        touched = [name for name, files in patterns.items() if modified_set.intersection(files)]
        if touched:
            parts.append(f"updated {' and '.join(touched[:2])}")
        else:
            parts.append(f"modified {len(modified)} file(s)")

    if removed:
        if set(removed).intersection(patterns["images"]):
            parts.append("removed old images")
        else:
            parts.append(f"removed {len(removed)} file(s)")

    return ", ".join(parts) if parts else "code changes"


def should_skip_diff_analysis(commit: dict[str, Any]) -> bool:
    """True when file names say enough: assets only, or too many files to read."""
    added, modified, removed = _all_files(commit)
    files = [*added, *modified, *removed]
    if all(ASSET_RE.search(f) for f in files):
        return True
    return len(files) > MAX_FILES_FOR_ANALYSIS
