"""
Nutrition search on behalf of an authenticated user.

A successful lookup is recorded in the user's search history before the raw
upstream payload is handed back. Failed lookups leave the history untouched.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from api.credential_store import CredentialStore, StoreError, User
from api.errors import InternalError, UpstreamError
from api.nutrition_service import NutritionClient, NutritionServiceError

logger = logging.getLogger(__name__)


def build_history_entry(food: str, payload: Dict[str, Any]) -> Dict[str, Any]:
  """Return the history record kept for a lookup: the query and the upstream items."""
  return {"food": food, "response": {"items": list(payload.get("items") or [])}}


def search_food(
  store: CredentialStore,
  client: NutritionClient,
  user: Optional[User],
  food: str,
) -> Dict[str, Any]:
  """Look ``food`` up for ``user``, record it in their history and return the raw payload."""
  if user is None:
    logger.error("User data not found for nutrition search")
    raise InternalError("User data not found")

  try:
    payload = client.lookup(food)
  except NutritionServiceError as exc:
    logger.warning("Nutrition lookup for %r failed: %s", food, exc)
    raise UpstreamError() from exc

  try:
    store.append_search_history(user, build_history_entry(food, payload))
  except StoreError:
    # The lookup already succeeded; the caller still gets its data.
    logger.exception("Failed to record search history for %s", user.username)

  return payload


__all__ = ["build_history_entry", "search_food"]
