"""
Signed bearer tokens for locally authenticated users.

Tokens are HS256 JWTs carrying the username and an expiry. Nothing is stored
server-side: a token is valid exactly as long as its signature checks out and
its ``exp`` claim lies in the future.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_EXPIRATION_MINUTES = 60


class InvalidToken(Exception):
  """Raised when a token cannot be verified."""

  def __init__(self, reason: str) -> None:
    super().__init__(reason)
    self.reason = reason


class TokenService:
  """Issue and verify username-bound JWTs with a shared secret."""

  def __init__(
    self,
    secret_key: str,
    *,
    expiration_minutes: int = DEFAULT_EXPIRATION_MINUTES,
    algorithm: str = JWT_ALGORITHM,
  ) -> None:
    if not secret_key:
      raise ValueError("A JWT secret key is required.")
    self._secret_key = secret_key
    self._algorithm = algorithm
    self.lifetime = timedelta(minutes=expiration_minutes)

  def issue(self, username: str, *, now: Optional[datetime] = None) -> str:
    """Return a signed token for ``username`` expiring ``lifetime`` after ``now``."""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
      "username": username,
      "iat": issued_at,
      "exp": issued_at + self.lifetime,
    }
    token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
    if isinstance(token, bytes):  # PyJWT<=1 compatibility
      token = token.decode("utf-8")
    return token

  def verify(self, token: str) -> str:
    """Return the username embedded in ``token`` or raise :class:`InvalidToken`."""
    try:
      claims = jwt.decode(
        token,
        self._secret_key,
        algorithms=[self._algorithm],
        options={"require": ["exp", "username"]},
      )
    except ExpiredSignatureError as exc:
      raise InvalidToken("Token has expired.") from exc
    except InvalidTokenError as exc:
      raise InvalidToken("Token is invalid.") from exc

    username = claims.get("username")
    if not isinstance(username, str) or not username:
      raise InvalidToken("Token payload is malformed.")
    return username


__all__ = ["InvalidToken", "TokenService", "JWT_ALGORITHM"]
