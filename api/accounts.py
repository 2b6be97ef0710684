"""Account creation and login flows on top of the credential store."""

from __future__ import annotations

import logging
from typing import Dict

from api.credential_store import CredentialStore
from api.errors import InvalidCredentials
from api.tokens import TokenService

logger = logging.getLogger(__name__)


def create_account(store: CredentialStore, username: str, password: str) -> None:
  """Register ``username``; raises ``Conflict`` when it is already taken."""
  store.create(username, password)
  logger.info("Created account %s", username)


def login(
  store: CredentialStore,
  tokens: TokenService,
  username: str,
  password: str,
) -> Dict[str, str]:
  """Check the credentials and return a fresh token; raises ``InvalidCredentials``."""
  user = store.find_by_username(username)
  if user is None or not store.validate_password(user, password):
    raise InvalidCredentials()
  return {"token": tokens.issue(user.username), "username": user.username}


def google_login(store: CredentialStore, external_token: str) -> Dict[str, str]:
  """
  Link a Google token to an account and echo it back.

  The token has already been verified by the OAuth collaborator; this only
  finds or creates the account it is linked to.
  """
  user = store.find_or_create_google_user(external_token)
  logger.info("Google login resolved to account %s", user.username)
  return {"token": external_token}


__all__ = ["create_account", "google_login", "login"]
