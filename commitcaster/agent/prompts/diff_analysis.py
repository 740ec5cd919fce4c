"""Prompts for the diff-analysis stage."""

from __future__ import annotations

from typing import Any

DIFF_ANALYSIS_SYSTEM_PROMPT = """\
You read git diffs and report only what they show. You never invent features, \
never guess at intent beyond the code, and never use emojis or hashtags."""


def build_diff_analysis_prompt(
    diff: str | None,
    files: list[dict[str, Any]],
    stats: dict[str, int],
    commit_message: str,
    repo_name: str,
) -> str | None:
    """User prompt for one commit, or None when there is no diff to analyze."""
    if not diff or not diff.strip():
        return None

    file_list = "\n".join(
        f"- {f['filename']} ({f['status']}: +{f['additions']}/-{f['deletions']})" for f in files
    )

    return f"""\
Analyze this git diff and provide a FACTUAL summary of what changed. Only describe changes \
you can directly see in the diff.

Repository: {repo_name}
Commit Message: {commit_message}
Stats: {stats.get('files_changed', len(files))} files changed, \
+{stats.get('additions', 0)} additions, -{stats.get('deletions', 0)} deletions

Files Changed:
{file_list}

Diff Content:
{diff}

INSTRUCTIONS:
1. Summarize ONLY what you can see in the diff above - do not invent or assume features
2. Focus on the PURPOSE of the changes, not line-by-line details
3. Use plain language, no jargon
4. Keep summary to 2-4 bullet points
5. Each bullet should be under 50 characters
6. If changes are unclear from diff, describe file types/areas modified
7. NO emojis, NO hashtags

Format your response as:
- [first change]
- [second change]
- [third change if applicable]

Example good response:
- added opengraph meta tags for social sharing
- updated share page to use new og component
- removed old logo images

Example BAD response (DO NOT DO THIS):
- added CLI debug flag (NOT in diff!)
- improved performance (vague/assumed!)
- new features with sparkles (emojis not allowed!)"""
