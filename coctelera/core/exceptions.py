"""
Exceptions raised by the access-control services.

Authorization denials are not exceptions: the validator returns an
``AccessDecision``. Issuance refusals are not exceptions either: the token
store and workflow return an ``IssuanceResult`` with a named outcome.
"""


class AccessControlError(Exception):
    """Base class for every error raised by the access-control core."""

    code = "ACCESS_CONTROL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class RequestValidationError(AccessControlError):
    """Malformed token request input (missing or invalid email, short explanation...)."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateEmail(AccessControlError):
    code = "DUPLICATE_EMAIL"


class AccountNotFound(AccessControlError):
    code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class TokenNotFound(AccessControlError):
    code = "TOKEN_NOT_FOUND"

    def __init__(self):
        super().__init__("Token not found")


class IllegalStateTransition(AccessControlError):
    code = "ILLEGAL_STATE_TRANSITION"

    def __init__(self, account_id: str, current: str, requested: str):
        super().__init__(f"Account {account_id} cannot go from '{current}' to '{requested}'")
        self.account_id = account_id
        self.current = current
        self.requested = requested


class InvalidConfirmation(AccessControlError):
    code = "INVALID_CONFIRMATION"


class TokenCollision(AccessControlError):
    """A generated token already exists. Only raised inside the issuance retry loop."""

    code = "TOKEN_COLLISION"


class IssuanceFailed(AccessControlError):
    """Issuance gave up after the collision retry bound. Safe to retry the whole request later."""

    code = "ISSUANCE_FAILED"


class StoreUnavailable(AccessControlError):
    """The store could not be reached or timed out. Never an authorization denial."""

    code = "STORE_UNAVAILABLE"
