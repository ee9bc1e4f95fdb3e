"""
Workflow error taxonomy

Every failure the engine surfaces to a caller is one of these types. The app
factory maps them onto HTTP responses; services never translate them into
generic exceptions.
"""
from enum import Enum
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all typed engine errors"""

    code = "workflow_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message, "retryable": self.retryable}
        if self.details:
            payload["context"] = self.details
        return payload


class NotFoundError(WorkflowError):
    code = "not_found"
    http_status = 404


class InvalidTransitionError(WorkflowError):
    """Requested state is not reachable from the current state"""

    code = "invalid_transition"
    http_status = 409


class ForbiddenError(WorkflowError):
    code = "forbidden"
    http_status = 403


class ConflictError(WorkflowError):
    """Optimistic concurrency collision; re-read and retry"""

    code = "conflict"
    http_status = 409
    retryable = True


class PublishDelegationRequired(WorkflowError):
    """published_wp is only ever committed by the publish orchestrator"""

    code = "publish_delegation_required"
    http_status = 409


class InsufficientFundsError(WorkflowError):
    """Raised by the ledger when a debit would drive the balance negative"""

    code = "insufficient_funds"
    http_status = 402

    def __init__(self, school_id: int, balance: int, requested: int):
        super().__init__(
            f"School {school_id} has {balance} coins, {requested} required",
            {"school_id": school_id, "balance": balance, "requested": requested},
        )
        self.school_id = school_id
        self.balance = balance
        self.requested = requested


class InsufficientCreditsError(WorkflowError):
    """Publish rejected because the school cannot pay the publish cost"""

    code = "insufficient_credits"
    http_status = 402


class CMSPublishError(WorkflowError):
    """WordPress rejected or never acknowledged the post; the debit was refunded"""

    code = "cms_publish_failed"
    http_status = 502


class PostPublishedButNotRecordedError(WorkflowError):
    """The post exists on WordPress but the engine could not record it"""

    code = "post_published_but_not_recorded"
    http_status = 500


class PaymentVerificationError(WorkflowError):
    code = "payment_verification_failed"
    http_status = 400


class ValidationError(WorkflowError):
    code = "validation_error"
    http_status = 422


class PlatformErrorCode(str, Enum):
    """Per-platform fan-out failure kinds"""

    NOT_CONNECTED = "not_connected"
    AUTH_EXPIRED = "auth_expired"
    REMOTE_REJECTED = "remote_rejected"
    TIMEOUT = "timeout"


class PlatformError(Exception):
    """Failure of a single platform inside a fan-out; never fails the whole call"""

    def __init__(self, code: PlatformErrorCode, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "status_code": self.status_code}
