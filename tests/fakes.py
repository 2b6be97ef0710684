"""Test doubles shared by the API tests."""

import threading

from api.nutrition_service import NutritionServiceError


def nutrition_payload(food):
  return {"items": [{"name": food, "calories": 89.4, "protein_g": 1.1, "serving_size_g": 100}]}


class FakeNutritionClient:
  """Answers every lookup locally; set ``fail`` to simulate an upstream outage."""

  def __init__(self, fail=False):
    self.fail = fail
    self.calls = []
    self._lock = threading.Lock()

  def lookup(self, food):
    with self._lock:
      self.calls.append(food)
    if self.fail:
      raise NutritionServiceError("Nutrition API responded with 502: bad gateway")
    return nutrition_payload(food)
