import unittest
from datetime import datetime, timedelta, timezone

import jwt

from api.tokens import InvalidToken, TokenService

SECRET = "unit-test-signing-secret-0123456789"


class TokenServiceTests(unittest.TestCase):
  def setUp(self):
    self.tokens = TokenService(SECRET)

  def test_issue_and_verify(self):
    token = self.tokens.issue("alice")
    self.assertEqual(self.tokens.verify(token), "alice")

  def test_token_embeds_one_hour_expiry(self):
    issued_at = datetime.now(timezone.utc).replace(microsecond=0)
    token = self.tokens.issue("alice", now=issued_at)
    claims = jwt.decode(token, SECRET, algorithms=["HS256"])
    self.assertEqual(claims["username"], "alice")
    self.assertEqual(claims["exp"] - claims["iat"], 3600)

  def test_token_valid_just_before_expiry(self):
    issued_at = datetime.now(timezone.utc) - timedelta(minutes=59)
    token = self.tokens.issue("alice", now=issued_at)
    self.assertEqual(self.tokens.verify(token), "alice")

  def test_token_invalid_after_expiry(self):
    issued_at = datetime.now(timezone.utc) - timedelta(minutes=61)
    token = self.tokens.issue("alice", now=issued_at)
    with self.assertRaises(InvalidToken) as ctx:
      self.tokens.verify(token)
    self.assertIn("expired", ctx.exception.reason)

  def test_token_signed_with_other_secret_is_rejected(self):
    token = TokenService("another-signing-secret-of-32-bytes!").issue("alice")
    with self.assertRaises(InvalidToken):
      self.tokens.verify(token)

  def test_tampered_payload_is_rejected(self):
    header, payload, signature = self.tokens.issue("alice").split(".")
    forged_payload = jwt.encode(
      {"username": "mallory", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
      "attacker-controlled-secret-32-bytes!",
      algorithm="HS256",
    ).split(".")[1]
    with self.assertRaises(InvalidToken):
      self.tokens.verify(".".join([header, forged_payload, signature]))

  def test_garbage_is_rejected(self):
    with self.assertRaises(InvalidToken):
      self.tokens.verify("not-a-token")

  def test_token_without_username_is_rejected(self):
    token = jwt.encode(
      {"exp": datetime.now(timezone.utc) + timedelta(hours=1)},
      SECRET,
      algorithm="HS256",
    )
    with self.assertRaises(InvalidToken):
      self.tokens.verify(token)

  def test_custom_lifetime(self):
    tokens = TokenService(SECRET, expiration_minutes=5)
    issued_at = datetime.now(timezone.utc) - timedelta(minutes=6)
    with self.assertRaises(InvalidToken):
      tokens.verify(tokens.issue("alice", now=issued_at))

  def test_secret_is_required(self):
    with self.assertRaises(ValueError):
      TokenService("")


if __name__ == "__main__":
  unittest.main()
