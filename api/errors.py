"""
Error taxonomy shared by the request handlers.

Every error carries the HTTP status it maps to and knows how to render itself
as a JSON body, so the Flask error handler can stay a one-liner.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
  """Base class for failures that are reported to the client."""

  status_code = 500
  default_message = "An unexpected error occurred."

  def __init__(self, message: Optional[str] = None) -> None:
    super().__init__(message or self.default_message)
    self.message = message or self.default_message

  def to_payload(self) -> Dict[str, Any]:
    return {"error": self.message}


class Unauthenticated(ServiceError):
  """No bearer token was supplied."""

  status_code = 401
  default_message = "You are not authenticated"


class Forbidden(ServiceError):
  """The bearer token is expired, tampered or malformed."""

  status_code = 403
  default_message = "Token is invalid"


class NotFound(ServiceError):
  """The token is valid but its user no longer exists."""

  status_code = 404
  default_message = "User not found"


class Conflict(ServiceError):
  """The username is already registered."""

  status_code = 400
  default_message = "Username already taken"

  def to_payload(self) -> Dict[str, Any]:
    return {"exists": True, "message": self.message}


class InvalidCredentials(ServiceError):
  """The username is unknown or the password does not match."""

  status_code = 400
  default_message = "Invalid credentials"


class ValidationError(ServiceError):
  """The request body does not match the endpoint schema."""

  status_code = 400
  default_message = "Invalid request body"


class UpstreamError(ServiceError):
  """The nutrition API could not answer the lookup."""

  status_code = 500
  default_message = "An error occurred while fetching data"


class InternalError(ServiceError):
  """An unexpected failure inside the service."""

  status_code = 500
  default_message = "Internal Server Error"


__all__ = [
  "Conflict",
  "Forbidden",
  "InternalError",
  "InvalidCredentials",
  "NotFound",
  "ServiceError",
  "Unauthenticated",
  "UpstreamError",
  "ValidationError",
]
