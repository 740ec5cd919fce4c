"""Service layer — business logic orchestration and the shared error taxonomy."""


class ServiceError(Exception):
    """Base service exception."""


class TerminalError(ServiceError):
    """Marker: the work queue must not retry an item failing with this error."""


class NotFoundError(ServiceError):
    """Resource not found (-> HTTP 404)."""


class ConflictError(ServiceError):
    """Business rule conflict (-> HTTP 409)."""


class ValidationError(TerminalError):
    """Malformed input (-> HTTP 400). Never retried."""


class AuthenticationError(ServiceError):
    """Authentication failure (-> HTTP 401)."""


class SignatureMismatchError(AuthenticationError):
    """Webhook HMAC signature did not match the selected secret."""


class ForbiddenError(ServiceError):
    """Caller authenticated but not allowed (-> HTTP 403)."""


class QuotaExceededError(TerminalError):
    """Per-tenant hourly AI quota exhausted (-> HTTP 429)."""

    def __init__(self, tenant_id: str, limit: int) -> None:
        super().__init__(f"quota exceeded for {tenant_id}: {limit} AI calls per hour")
        self.tenant_id = tenant_id
        self.limit = limit


# ---------------------------------------------------------------------------
# Credential vault
# ---------------------------------------------------------------------------


class NoCredentialError(ServiceError):
    """No token stored for (provider, subject)."""


class RefreshUnavailableError(ServiceError):
    """Token expired and no refresh token is stored."""


class RefreshRejectedError(ServiceError):
    """Provider refused the refresh grant."""


# ---------------------------------------------------------------------------
# Pipeline (diff fetch, AI, posting)
# ---------------------------------------------------------------------------


class TransportError(ServiceError):
    """Network failure, timeout or 5xx from an external provider."""


class RateLimitedError(ServiceError):
    """External provider throttled the call."""

    def __init__(self, message: str = "rate limit exceeded", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class CommitNotFoundError(ServiceError):
    """Commit missing on the code host."""


class ReauthRequiredError(TerminalError):
    """Social-net credential cannot be used or refreshed; the tenant must re-authorize."""


class PermissionsInsufficientError(TerminalError):
    """Provider refused the call for lack of scope."""


class AuthFailedError(ServiceError):
    """Provider rejected the access token."""


class InvalidPostError(ServiceError):
    """Provider refused the post text or its quote/reply linkage."""
