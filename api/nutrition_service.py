"""
Client helpers for the external nutrition-lookup API (CalorieNinjas).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_NUTRITION_API_URL = "https://api.calorieninjas.com/v1/nutrition"


class NutritionServiceError(RuntimeError):
  """Raised when the nutrition API cannot answer a query."""


def call_nutrition_api(
  food: str,
  *,
  url: str = DEFAULT_NUTRITION_API_URL,
  api_key: Optional[str] = None,
  timeout: float = 10,
) -> Dict[str, Any]:
  """
  Look up nutrition facts for ``food``.

  Parameters
  ----------
  food:
      Free-text food name, sent as the ``query`` parameter.
  url:
      Fully-qualified endpoint of the nutrition API.
  api_key:
      Key injected as the ``X-Api-Key`` header.
  timeout:
      Request timeout in seconds. A timeout is reported like any other failure.
  """
  if not url:
    raise NutritionServiceError("Nutrition API URL is not configured.")

  headers = {}
  if api_key:
    headers["X-Api-Key"] = api_key

  try:
    response = requests.get(url, params={"query": food}, headers=headers, timeout=timeout)
  except requests.RequestException as exc:
    raise NutritionServiceError(f"Nutrition API request failed: {exc}") from exc

  if not response.ok:
    error_body = response.text[:200] if response.text else response.reason
    raise NutritionServiceError(
      f"Nutrition API responded with {response.status_code}: {error_body}"
    )

  try:
    payload = response.json()
  except ValueError as exc:
    raise NutritionServiceError("Nutrition API did not return JSON.") from exc

  if not isinstance(payload, dict):
    raise NutritionServiceError("Nutrition API returned an unexpected payload.")
  return payload


class NutritionClient:
  """Bound configuration for :func:`call_nutrition_api`."""

  def __init__(
    self,
    *,
    url: str = DEFAULT_NUTRITION_API_URL,
    api_key: Optional[str] = None,
    timeout: float = 10,
  ) -> None:
    self.url = url
    self.api_key = api_key
    self.timeout = timeout

  def lookup(self, food: str) -> Dict[str, Any]:
    return call_nutrition_api(food, url=self.url, api_key=self.api_key, timeout=self.timeout)


__all__ = [
  "DEFAULT_NUTRITION_API_URL",
  "NutritionClient",
  "NutritionServiceError",
  "call_nutrition_api",
]
