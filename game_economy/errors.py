"""
Error taxonomy for economy operations.

Every error carries the HTTP status the route layer answers with, so the
services never import FastAPI.
"""


class EconomyError(Exception):
    status_code = 400
    error = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error


class ValidationError(EconomyError):
    status_code = 400
    error = "Invalid request"


class NotFoundError(EconomyError):
    status_code = 404
    error = "Not found"


class InsufficientFundsError(EconomyError):
    status_code = 400
    error = "Insufficient funds"


class AlreadyClaimedError(EconomyError):
    status_code = 400
    error = "Already claimed"


class AlreadyExistsError(EconomyError):
    status_code = 409
    error = "Already exists"


class AuthenticationError(EconomyError):
    status_code = 401
    error = "Authentication failed"


class PersistenceUnavailable(EconomyError):
    status_code = 503
    error = "Database service unavailable"
