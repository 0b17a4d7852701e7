class SpendLinksError(Exception):
    """Base class for every error the service raises on purpose."""


class ValidationError(SpendLinksError):
    """Raised when input is rejected before any storage is touched."""


class NotFoundError(SpendLinksError):
    """Raised when a record is missing from the store."""


class WalletNotFoundError(NotFoundError):
    """Raised when a wallet id is missing from the store."""


class LinkNotFoundError(NotFoundError):
    """Raised when a link id is missing or not visible to the caller."""


class UnauthorizedError(SpendLinksError):
    """Raised on a wrong passcode or PIN, or when the caller is not the owner.

    The message is always generic; details only go to the server log.
    """

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class ConflictError(SpendLinksError):
    """Raised when a compare-and-swap status update loses to another writer."""


class InvalidStateError(ConflictError):
    """Raised when a transition is attempted from a state that does not allow it."""


class DuplicateCodeError(ConflictError):
    """Raised when a link code is already taken."""


class InsufficientFundsError(SpendLinksError):
    """Raised when a debit would drop a wallet balance below zero."""


class UpstreamFailure(SpendLinksError):
    """Raised when the disbursement provider fails to move money."""


class DuplicateIdempotencyKeyError(SpendLinksError):
    """Raised when the same idempotency key is reused with different input."""


class SubscriptionClosedError(SpendLinksError):
    """Raised to a consumer whose event stream was closed by the channel."""
