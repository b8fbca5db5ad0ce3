"""
Subscription domain errors.

Every error carries the HTTP status the API layer should answer with and a
``retryable`` flag read by the renewal job. Anything that is not a
``SubscriptionError`` (database disconnects, lock timeouts) is treated as
transient by the job and retried.
"""

from http import HTTPStatus


class SubscriptionError(Exception):
    """Base class for subscription workflow errors."""

    status_code: int = HTTPStatus.BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str, **details):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# ── Missing entities / bad inputs ──────────────────────────

class SubscriptionNotFound(SubscriptionError):
    status_code = HTTPStatus.NOT_FOUND


class CustomerNotFound(SubscriptionError):
    status_code = HTTPStatus.NOT_FOUND


class PlanNotFound(SubscriptionError):
    status_code = HTTPStatus.NOT_FOUND


class WalletNotFound(SubscriptionError):
    status_code = HTTPStatus.NOT_FOUND


class ProductNotFound(SubscriptionError):
    status_code = HTTPStatus.NOT_FOUND


class ProductNotSubscribable(SubscriptionError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class InvalidFrequency(SubscriptionError, ValueError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


class UnsupportedPaymentMethod(SubscriptionError, ValueError):
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY


# ── State / permission ─────────────────────────────────────

class InvalidStatusTransition(SubscriptionError):
    status_code = HTTPStatus.CONFLICT


class BufferWindowViolation(SubscriptionError):
    """Pause/cancel/resume requested too close to a committed delivery."""

    status_code = HTTPStatus.CONFLICT


class SubscriptionBusy(SubscriptionError):
    """The renewal job currently holds the subscription's processing lock."""

    status_code = HTTPStatus.CONFLICT


# ── Resources ──────────────────────────────────────────────

class InsufficientWalletBalance(SubscriptionError):
    status_code = HTTPStatus.PAYMENT_REQUIRED


class InsufficientStock(SubscriptionError):
    status_code = HTTPStatus.CONFLICT


# ── Ledger invariants ──────────────────────────────────────

class InsufficientLockedBalance(SubscriptionError):
    """Releasing or debiting more than is reserved; the transaction must abort."""

    status_code = HTTPStatus.CONFLICT
