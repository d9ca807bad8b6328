"""
Billing error taxonomy.

Synchronous paths (creation, upgrade, verification, cancellation) raise these
and the API layer renders them as ``{"error": code, "detail": message}`` with
the real HTTP status. The webhook path never lets them escape.
"""
from typing import Optional, Dict, Any


class BillingError(Exception):
    """Base class for errors returned to synchronous callers."""

    status_code = 400
    code = "billing_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "detail": self.message}
        body.update(self.extra)
        return body


class ValidationFailure(BillingError):
    status_code = 400
    code = "validation_error"


class MissingPayerEmail(ValidationFailure):
    code = "missing_payer_email"


class PlanNotSynced(ValidationFailure):
    code = "plan_not_synced"


class DuplicateActiveSubscription(BillingError):
    status_code = 409
    code = "duplicate_active_subscription"


class NotFound(BillingError):
    status_code = 404
    code = "not_found"


class OwnershipMismatch(BillingError):
    status_code = 403
    code = "forbidden"


class ConfigurationError(BillingError):
    status_code = 500
    code = "not_configured"


class ProviderUnavailable(BillingError):
    status_code = 502
    code = "provider_error"


class UpgradePartialFailure(BillingError):
    """
    Phase 2 of an upgrade failed after Phase 1 succeeded.

    Both preapprovals may be billing; the attempt is recorded for an operator
    and must not be retried by re-running Phase 1.
    """
    status_code = 502
    code = "upgrade_partial_failure"

    def __init__(self, message: str, attempt_id: str, extra: Optional[Dict[str, Any]] = None):
        payload = {"upgradeAttemptId": attempt_id}
        payload.update(extra or {})
        super().__init__(message, extra=payload)
        self.attempt_id = attempt_id
