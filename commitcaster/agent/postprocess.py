"""Clean-up applied to model output before it becomes a post body."""

from __future__ import annotations

import re

_EMOJI_RE = re.compile(
    "["
    "\U0001f000-\U0001faff"  # pictographs, emoticons, transport, supplemental symbols
    "\U00002600-\U000027bf"  # misc symbols, dingbats
    "\U00002b00-\U00002bff"  # arrows, stars
    "\U0000fe00-\U0000fe0f"  # variation selectors
    "\u200d"  # zero-width joiner
    "\u20e3"  # keycap
    "]+"
)
_HASHTAG_RE = re.compile(r"(?<![\w&])#[^\W\d]\w*")
_FENCE_RE = re.compile(r"^```[a-z]*\n?|\n?```$")
_SPACES_RE = re.compile(r"[ \t]{2,}")


def strip_emojis(text: str) -> str:
    return _EMOJI_RE.sub("", text)


def strip_hashtags(text: str) -> str:
    return _HASHTAG_RE.sub("", text)


def clean_model_output(text: str | None) -> str:
    """Trim fences and surrounding quotes from a raw completion."""
    if not text:
        return ""
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned


def sanitize_post_text(text: str | None) -> str:
    """Remove emojis and hashtags, then tidy the whitespace they leave behind."""
    if not text:
        return ""
    cleaned = strip_hashtags(strip_emojis(text))
    lines = [_SPACES_RE.sub(" ", line).rstrip() for line in cleaned.splitlines()]
    return "\n".join(lines).strip()
