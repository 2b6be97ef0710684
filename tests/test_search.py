import tempfile
import unittest
from pathlib import Path
from unittest import mock

from api.credential_store import SqliteCredentialStore, StoreError
from api.errors import InternalError, UpstreamError
from api.search import build_history_entry, search_food
from tests.fakes import FakeNutritionClient, nutrition_payload


class SearchFoodTests(unittest.TestCase):
  def setUp(self):
    self._tmpdir = tempfile.TemporaryDirectory()
    self.store = SqliteCredentialStore(Path(self._tmpdir.name) / "users.db")
    self.user = self.store.create("alice", "secret")

  def tearDown(self):
    self._tmpdir.cleanup()

  def test_success_appends_entry_and_returns_payload(self):
    client = FakeNutritionClient()

    payload = search_food(self.store, client, self.user, "banana")

    self.assertEqual(payload, nutrition_payload("banana"))
    history = self.store.find_by_username("alice").search_history
    self.assertEqual(history, [{"food": "banana", "response": {"items": payload["items"]}}])

  def test_upstream_failure_does_not_append(self):
    with self.assertRaises(UpstreamError):
      search_food(self.store, FakeNutritionClient(fail=True), self.user, "banana")
    self.assertEqual(self.store.find_by_username("alice").search_history, [])

  def test_missing_user_fails_before_lookup(self):
    client = FakeNutritionClient()
    with self.assertRaises(InternalError):
      search_food(self.store, client, None, "banana")
    self.assertEqual(client.calls, [])

  def test_append_failure_still_returns_payload(self):
    store = mock.Mock()
    store.append_search_history.side_effect = StoreError("disk full")

    with self.assertLogs("api.search", level="ERROR"):
      payload = search_food(store, FakeNutritionClient(), self.user, "banana")

    self.assertEqual(payload, nutrition_payload("banana"))
    store.append_search_history.assert_called_once()

  def test_history_entry_keeps_only_items(self):
    entry = build_history_entry("banana", {"items": [{"name": "banana"}], "extra": 1})
    self.assertEqual(entry, {"food": "banana", "response": {"items": [{"name": "banana"}]}})
    self.assertEqual(build_history_entry("x", {}), {"food": "x", "response": {"items": []}})


if __name__ == "__main__":
  unittest.main()
