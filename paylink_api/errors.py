"""
Error taxonomy for link lifecycle and claim processing.

Every error carries a stable ``code`` for clients, the HTTP status it maps to,
whether the caller may retry, and a ``details`` payload.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class PaylinkError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    return value


class ValidationError(PaylinkError):
    code = "validation_error"
    status_code = 400


class UnauthorizedError(PaylinkError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(PaylinkError):
    code = "not_found"
    status_code = 404

    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"Link not found: {link_id}", link_id=link_id)


class TransitionConflictError(PaylinkError):
    """The stored state did not match the expected precondition."""

    code = "transition_conflict"
    status_code = 409

    def __init__(self, link_id: str, expected: Any, actual: Any):
        self.link_id = link_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Link {link_id} is {_jsonable(actual)}, expected {_jsonable(expected)}",
            link_id=link_id,
            expected=expected,
            actual=actual,
        )


class AlreadyDepositedError(PaylinkError):
    code = "already_deposited"
    status_code = 409


class NotClaimableError(PaylinkError):
    """Link is not in DEPOSITED; ``reason`` tells clients why."""

    code = "not_claimable"
    status_code = 409

    def __init__(self, link_id: str, reason: str, message: Optional[str] = None):
        self.link_id = link_id
        self.reason = reason
        super().__init__(
            message or f"Link {link_id} cannot be claimed ({reason})",
            link_id=link_id,
            reason=reason,
        )


class AlreadyClaimedError(NotClaimableError):
    code = "already_claimed"

    def __init__(self, link_id: str, reason: str = "claimed"):
        super().__init__(link_id, reason, f"Link {link_id} has already been claimed")


class ClaimInProgressError(AlreadyClaimedError):
    code = "claim_in_progress"
    retryable = True

    def __init__(self, link_id: str):
        NotClaimableError.__init__(
            self, link_id, "claiming", f"Another claim for link {link_id} is in progress"
        )


class FeeExceedsAmountError(PaylinkError):
    code = "fee_exceeds_amount"
    status_code = 422

    def __init__(self, gross: Decimal, total_fee: Decimal):
        self.gross = gross
        self.total_fee = total_fee
        super().__init__(
            f"Fees ({total_fee}) consume the whole amount ({gross})",
            gross=gross,
            total_fee=total_fee,
        )


class InsufficientBalanceError(PaylinkError):
    code = "insufficient_balance"
    status_code = 503
    retryable = True

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Operator balance too low. Required: {required}, Available: {available}",
            required=required,
            available=available,
            shortfall=self.shortfall,
        )


class RelayError(PaylinkError):
    """Base class for failures reported by the external relay."""

    code = "relay_error"
    status_code = 502


class TransientRelayError(RelayError):
    code = "relay_unavailable"
    status_code = 503
    retryable = True


class RelayTimeoutError(TransientRelayError):
    code = "relay_timeout"


class PermanentRelayError(RelayError):
    code = "relay_rejected"
    status_code = 422


class FatalConsistencyError(PaylinkError):
    """Funds left the pool but the link could not be finalised."""

    code = "fatal_consistency"
    status_code = 500
