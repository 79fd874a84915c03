"""Domain errors shared by services, routers and the socket handler.

Each class maps to one kind of client-visible failure and carries the HTTP
status it is reported with. Business-rule and validation errors are always
raised before anything is written.
"""

from __future__ import annotations


class FelicityError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(FelicityError):
    status_code = 404


class ValidationFailed(FelicityError):
    status_code = 400


class Forbidden(FelicityError):
    status_code = 403


class BusinessRuleError(FelicityError):
    """Capacity, deadline, stock, lock and status rules."""

    status_code = 400


class Unauthorized(FelicityError):
    status_code = 401


class ExternalDependencyFailure(FelicityError):
    """Webhook or delivery failure. Logged by the caller, never surfaced."""

    status_code = 502
