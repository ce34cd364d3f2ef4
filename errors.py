"""Error taxonomy shared by the sync, analytics and assistant layers.

Every error carries a small stable ``code`` and a human-readable ``detail``
so callers can decide on retry without parsing messages. Details must never
contain credential values.
"""

from typing import Optional


class FinanceError(Exception):
    code = "internal_error"

    def __init__(self, detail: str = "", code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "details": self.detail}


class AuthenticationMissing(FinanceError):
    """No stored access token for the user. Terminal: the user must re-link."""

    code = "auth_missing"


class UpstreamProviderError(FinanceError):
    """Wraps a provider failure. Retryable by the caller with backoff.

    ``provider_code`` carries the provider's own error code (e.g. Plaid's
    ``ITEM_LOGIN_REQUIRED``) alongside the stable ``code``.
    """

    code = "provider_error"

    def __init__(self, detail: str = "", code: Optional[str] = None, provider_code: Optional[str] = None):
        super().__init__(detail, code)
        self.provider_code = provider_code

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.provider_code:
            body["provider_code"] = self.provider_code
        return body


class ValidationError(FinanceError):
    """Missing or malformed input. Rejected immediately, never retried."""

    code = "validation_error"


class PersistenceWarning(FinanceError):
    """Document store write failed. Logged at the boundary, never surfaced."""

    code = "persistence_warning"


class SyncInProgress(FinanceError):
    code = "sync_in_progress"


class CompletionServiceError(FinanceError):
    code = "completion_failed"
