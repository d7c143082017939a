"""
Error taxonomy for the ClickMemory API.

Every class carries the HTTP status, a stable machine-readable ``code`` and a
client-safe ``message``. ``main.py`` renders them as::

    {"error": {"code": "...", "message": "..."}}

Messages never include provider or storage error text.
"""


class ApiError(Exception):
    status_code = 500
    code = "internal_error"
    message = "An internal server error occurred"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ── Identity (401) ────────────────────────────────────────────────────────────


class AuthError(ApiError):
    status_code = 401
    code = "unauthorized"
    message = "Not authenticated"


class MissingCredential(AuthError):
    code = "missing_credential"
    message = "Authorization header with Bearer token required"


class InvalidCredential(AuthError):
    code = "invalid_credential"
    message = "Invalid or expired token. Please log in again."


# ── Unavailable dependencies (503) ────────────────────────────────────────────


class ServiceUnavailable(ApiError):
    status_code = 503
    code = "service_unavailable"
    message = "Service temporarily unavailable"


class ProviderUnavailable(ServiceUnavailable):
    code = "identity_provider_unavailable"


class Timeout(ProviderUnavailable):
    code = "identity_provider_timeout"


class StorageFailure(ServiceUnavailable):
    code = "storage_unavailable"


class ServiceNotConfigured(ServiceUnavailable):
    code = "service_not_configured"
    message = "Service configuration error"


# ── CSRF (403) ────────────────────────────────────────────────────────────────


class CsrfError(ApiError):
    status_code = 403
    code = "csrf_invalid"
    message = "Invalid CSRF token."


class CsrfMissing(CsrfError):
    code = "csrf_missing"
    message = "CSRF token is missing."


class CsrfInvalid(CsrfError):
    """Unknown, mismatched, expired or already-used token: one outward signal."""


# ── Misc ──────────────────────────────────────────────────────────────────────


class RateLimited(ApiError):
    status_code = 429
    code = "rate_limited"
    message = "Rate limit exceeded. Please wait before generating another API key."


class NotFound(ApiError):
    status_code = 404
    code = "not_found"
    message = "Not found"
