import unittest
from unittest import mock

import requests

from api.nutrition_service import (
  DEFAULT_NUTRITION_API_URL,
  NutritionClient,
  NutritionServiceError,
  call_nutrition_api,
)

BANANA = {"items": [{"name": "banana", "calories": 89.4, "serving_size_g": 100}]}


def _response(status=200, payload=None, text=""):
  response = mock.Mock()
  response.status_code = status
  response.ok = 200 <= status < 300
  response.text = text
  response.reason = "Error"
  if isinstance(payload, Exception):
    response.json.side_effect = payload
  else:
    response.json.return_value = payload
  return response


class CallNutritionApiTests(unittest.TestCase):
  @mock.patch("api.nutrition_service.requests.get")
  def test_success_sends_query_and_key(self, get):
    get.return_value = _response(payload=BANANA)

    payload = call_nutrition_api("banana", api_key="k3y", timeout=3)

    self.assertEqual(payload, BANANA)
    get.assert_called_once_with(
      DEFAULT_NUTRITION_API_URL,
      params={"query": "banana"},
      headers={"X-Api-Key": "k3y"},
      timeout=3,
    )

  @mock.patch("api.nutrition_service.requests.get")
  def test_network_error(self, get):
    get.side_effect = requests.ConnectionError("down")
    with self.assertRaises(NutritionServiceError):
      call_nutrition_api("banana")

  @mock.patch("api.nutrition_service.requests.get")
  def test_timeout(self, get):
    get.side_effect = requests.Timeout("slow")
    with self.assertRaises(NutritionServiceError):
      call_nutrition_api("banana", timeout=0.1)

  @mock.patch("api.nutrition_service.requests.get")
  def test_non_2xx(self, get):
    get.return_value = _response(status=401, text="bad key")
    with self.assertRaises(NutritionServiceError) as ctx:
      call_nutrition_api("banana")
    self.assertIn("401", str(ctx.exception))

  @mock.patch("api.nutrition_service.requests.get")
  def test_non_json_body(self, get):
    get.return_value = _response(payload=ValueError("no json"))
    with self.assertRaises(NutritionServiceError):
      call_nutrition_api("banana")

  def test_missing_url(self):
    with self.assertRaises(NutritionServiceError):
      call_nutrition_api("banana", url="")


class NutritionClientTests(unittest.TestCase):
  @mock.patch("api.nutrition_service.requests.get")
  def test_lookup_uses_bound_settings(self, get):
    get.return_value = _response(payload=BANANA)
    client = NutritionClient(url="https://nutrition.test/v1", api_key=None, timeout=7)

    self.assertEqual(client.lookup("banana"), BANANA)
    get.assert_called_once_with(
      "https://nutrition.test/v1",
      params={"query": "banana"},
      headers={},
      timeout=7,
    )


if __name__ == "__main__":
  unittest.main()
