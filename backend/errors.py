"""
Error taxonomy shared by the service modules.

Services raise these; main.py turns them into the JSON envelope
{"success": false, "message": ..., "error"?: ...}.
"""
from typing import Any, Optional

from pydantic import ValidationError


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.error = error


class NotFoundError(ServiceError):
    status_code = 404


class BadRequestError(ServiceError):
    status_code = 400


class ConflictError(ServiceError):
    status_code = 409


def from_validation(exc: ValidationError) -> BadRequestError:
    """Wrap a schema validation failure, using the first reason as the message."""
    errors = exc.errors(include_url=False, include_context=False)
    message = errors[0]["msg"] if errors else str(exc)
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return BadRequestError(message, error=errors)


def envelope_error(message: str, error: Optional[Any] = None) -> dict:
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return body
