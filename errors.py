"""
Error taxonomy shared by the services and the HTTP layer.

Every exception carries a client-safe ``message`` and the HTTP status the API
answers with. None of them ever embeds credential material.
"""

from typing import Optional


class ShopError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(ShopError):
    status_code = 400
    message = "Invalid input"


class ConflictError(ShopError):
    status_code = 409
    message = "Resource already exists"


class NotFoundError(ShopError):
    status_code = 404
    message = "Not found"


class ForbiddenError(ShopError):
    status_code = 403
    message = "Not allowed to act on another user's account"


class InvalidCredentials(ShopError):
    status_code = 401
    message = "Incorrect login or password"


class TokenError(ShopError):
    status_code = 401
    message = "Could not validate credentials"


class InvalidSignature(TokenError):
    message = "Token signature is invalid"


class TokenExpired(TokenError):
    message = "Token has expired"


class MalformedToken(TokenError):
    message = "Token is malformed"


class InsufficientFunds(ShopError):
    status_code = 402
    message = "Insufficient funds in wallet"


class MalformedCredential(ShopError):
    status_code = 500
    message = "Stored credential is corrupted"


class RandomnessUnavailable(ShopError):
    status_code = 503
    message = "Secure randomness is unavailable"


class StorageError(ShopError):
    """A storage call failed; ``operation`` names what was attempted."""

    status_code = 500
    message = "Storage failure"

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__()

    def __str__(self):
        if self.cause is None:
            return f"{self.operation}: storage failure"
        return f"{self.operation}: {self.cause.__class__.__name__}"
