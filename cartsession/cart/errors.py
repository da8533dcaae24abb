from __future__ import annotations

from cartsession.cart.models import CartSessionError, ErrorCode
from cartsession.network.cancellation import OperationCancelledError
from cartsession.network.retry import RetryError, RetryTimeoutError


class CartStoreError(Exception):
    """Domain error raised by the session store."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class UnknownTierError(CartStoreError):
    def __init__(self, tier: str):
        super().__init__(f"Pricing plan not found for tier: {tier}", retryable=False)
        self.tier = tier


class SessionNotFoundError(CartStoreError):
    def __init__(self, message: str = "Cart session not found or expired."):
        super().__init__(message, retryable=True)


class SessionExpiredError(CartStoreError):
    def __init__(self, message: str = "Cart session expired."):
        super().__init__(message, retryable=False)


class CartSessionFailure(Exception):
    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str | None = None, cause: BaseException | None = None):
        super().__init__(message or self.code.value)
        self.message = message
        self.cause = cause

    def to_record(self) -> CartSessionError:
        return CartSessionError(code=self.code, message=self.message)


class OfflineError(CartSessionFailure):
    code = ErrorCode.OFFLINE


class CartTimeoutError(CartSessionFailure):
    code = ErrorCode.TIMEOUT


class NetworkError(CartSessionFailure):
    code = ErrorCode.NETWORK


class ExpiredError(CartSessionFailure):
    code = ErrorCode.EXPIRED


class UnknownError(CartSessionFailure):
    code = ErrorCode.UNKNOWN


def is_retryable(error: BaseException, _attempt: int = 0) -> bool:
    if isinstance(error, OperationCancelledError):
        return False
    if isinstance(error, CartStoreError):
        return error.retryable
    return True


def classify_failure(error: BaseException) -> CartSessionFailure | None:
    """Map a terminal reconciliation failure onto exactly one taxonomy member.

    Returns ``None`` for cancellation, which is never surfaced.
    """
    if isinstance(error, CartSessionFailure):
        return error
    if isinstance(error, OperationCancelledError):
        return None
    if isinstance(error, RetryTimeoutError):
        return CartTimeoutError(cause=error)
    if isinstance(error, RetryError):
        cause = error.cause
        if isinstance(cause, SessionExpiredError):
            return ExpiredError(cause=cause)
        if isinstance(cause, CartStoreError) and not cause.retryable:
            return UnknownError(str(cause), cause=cause)
        return NetworkError(str(cause) if cause is not None else None, cause=cause)
    if isinstance(error, SessionExpiredError):
        return ExpiredError(cause=error)
    return UnknownError(str(error) or None, cause=error)
