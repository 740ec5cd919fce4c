"""PKCE helpers (RFC 7636), S256 method only."""

from __future__ import annotations

import base64
import hashlib
import re
import secrets
import string
from dataclasses import dataclass

VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128

UNRESERVED_CHARS = string.ascii_letters + string.digits + "-._~"
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = "S256"


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without ``=`` padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(length: int = VERIFIER_MAX_LENGTH) -> str:
    """Random verifier over the unreserved character set.

    Raises ``ValueError`` when *length* is outside 43..128.
    """
    if not VERIFIER_MIN_LENGTH <= length <= VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"code verifier length must be between {VERIFIER_MIN_LENGTH} and {VERIFIER_MAX_LENGTH}"
        )
    return "".join(secrets.choice(UNRESERVED_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    return base64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_pkce_pair(length: int = VERIFIER_MAX_LENGTH) -> PKCEPair:
    verifier = generate_code_verifier(length)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def is_valid_code_verifier(verifier: str | None) -> bool:
    return bool(verifier) and _VERIFIER_RE.match(verifier) is not None  # type: ignore[arg-type]


def generate_state() -> str:
    """Opaque CSRF state for an authorization request."""
    return secrets.token_urlsafe(32)
