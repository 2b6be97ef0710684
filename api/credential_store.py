"""
Persistence for user identity records and their search history.

Two backends share one interface:

* ``SqliteCredentialStore`` keeps users and history rows in a local SQLite
  file (development default).
* ``DynamoCredentialStore`` keeps one DynamoDB item per user with the history
  stored as a list attribute (production).

Both enforce username uniqueness inside the store itself (primary key or
conditional put) and append history entries with a single atomic write, so
concurrent requests for the same user cannot lose each other's entries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.security import check_password_hash, generate_password_hash

from api.errors import Conflict

logger = logging.getLogger(__name__)

GOOGLE_USERNAME_PREFIX = "google-"


class StoreError(RuntimeError):
  """Raised when the backing database cannot complete an operation."""


@dataclass
class User:
  username: str
  password_hash: Optional[str] = None
  google_token: Optional[str] = None
  created_at: str = ""
  search_history: List[Dict[str, Any]] = field(default_factory=list)


def _utc_now() -> str:
  return datetime.now(timezone.utc).isoformat()


def _generated_google_username() -> str:
  return f"{GOOGLE_USERNAME_PREFIX}{uuid.uuid4().hex}"


class CredentialStore:
  """Interface shared by the storage backends."""

  def find_by_username(self, username: str) -> Optional[User]:
    raise NotImplementedError

  def find_by_google_token(self, token: str) -> Optional[User]:
    raise NotImplementedError

  def create(self, username: str, password: str) -> User:
    raise NotImplementedError

  def find_or_create_google_user(self, token: str) -> User:
    raise NotImplementedError

  def append_search_history(self, user: User, entry: Dict[str, Any]) -> User:
    raise NotImplementedError

  def close(self) -> None:
    """Release backend resources. Safe to call more than once."""

  def validate_password(self, user: User, candidate: str) -> bool:
    """Return whether ``candidate`` matches the stored hash; never raises."""
    if not user.password_hash or not candidate:
      return False
    try:
      return check_password_hash(user.password_hash, candidate)
    except (TypeError, ValueError):
      logger.warning("Stored password hash for %s is unreadable", user.username)
      return False


class SqliteCredentialStore(CredentialStore):
  """SQLite-backed store; opens a short-lived connection per operation."""

  def __init__(self, db_path: Path | str, *, timeout: float = 5.0) -> None:
    self.db_path = Path(db_path)
    self.timeout = timeout
    self._initialise()

  def _connect(self) -> sqlite3.Connection:
    """Return a SQLite connection with row access by name."""
    self.db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(self.db_path, timeout=self.timeout)
    conn.row_factory = sqlite3.Row
    return conn

  def _initialise(self) -> None:
    """Ensure the tables exist with the expected schema."""
    conn = self._connect()
    try:
      with conn:
        conn.execute(
          """
          CREATE TABLE IF NOT EXISTS users (
            username TEXT PRIMARY KEY,
            password_hash TEXT,
            google_token TEXT UNIQUE,
            created_at TEXT NOT NULL
          )
          """
        )
        conn.execute(
          """
          CREATE TABLE IF NOT EXISTS search_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL REFERENCES users(username),
            food TEXT NOT NULL,
            response TEXT NOT NULL,
            created_at TEXT NOT NULL
          )
          """
        )
        conn.execute(
          """
          CREATE INDEX IF NOT EXISTS idx_search_history_username
          ON search_history (username, id)
          """
        )
    except sqlite3.DatabaseError as exc:
      raise StoreError(f"Could not initialise SQLite schema: {exc}") from exc
    finally:
      conn.close()

  def _load_user(self, conn: sqlite3.Connection, row: sqlite3.Row) -> User:
    history_rows = conn.execute(
      """
      SELECT food, response
      FROM search_history
      WHERE username = ?
      ORDER BY id ASC
      """,
      (row["username"],),
    ).fetchall()
    return User(
      username=row["username"],
      password_hash=row["password_hash"],
      google_token=row["google_token"],
      created_at=row["created_at"],
      search_history=[
        {"food": entry["food"], "response": json.loads(entry["response"] or "{}")}
        for entry in history_rows
      ],
    )

  def _find_one(self, column: str, value: str) -> Optional[User]:
    conn = self._connect()
    try:
      row = conn.execute(
        f"""
        SELECT username, password_hash, google_token, created_at
        FROM users
        WHERE {column} = ?
        """,
        (value,),
      ).fetchone()
      if row is None:
        return None
      return self._load_user(conn, row)
    except sqlite3.DatabaseError as exc:
      raise StoreError(f"User lookup failed: {exc}") from exc
    finally:
      conn.close()

  def _insert_user(self, user: User) -> None:
    conn = self._connect()
    try:
      with conn:
        conn.execute(
          """
          INSERT INTO users (username, password_hash, google_token, created_at)
          VALUES (?, ?, ?, ?)
          """,
          (user.username, user.password_hash, user.google_token, user.created_at),
        )
    finally:
      conn.close()

  def find_by_username(self, username: str) -> Optional[User]:
    return self._find_one("username", username)

  def find_by_google_token(self, token: str) -> Optional[User]:
    return self._find_one("google_token", token)

  def create(self, username: str, password: str) -> User:
    user = User(
      username=username,
      password_hash=generate_password_hash(password),
      created_at=_utc_now(),
    )
    try:
      self._insert_user(user)
    except sqlite3.IntegrityError as exc:
      raise Conflict() from exc
    except sqlite3.DatabaseError as exc:
      raise StoreError(f"Account creation failed: {exc}") from exc
    return user

  def find_or_create_google_user(self, token: str) -> User:
    existing = self.find_by_google_token(token)
    if existing:
      return existing

    user = User(
      username=_generated_google_username(),
      google_token=token,
      created_at=_utc_now(),
    )
    try:
      self._insert_user(user)
    except sqlite3.IntegrityError:
      # Another request linked this token first.
      winner = self.find_by_google_token(token)
      if winner is None:
        raise StoreError("Google account creation conflicted but no linked user exists.")
      return winner
    except sqlite3.DatabaseError as exc:
      raise StoreError(f"Google account creation failed: {exc}") from exc
    return user

  def append_search_history(self, user: User, entry: Dict[str, Any]) -> User:
    conn = self._connect()
    try:
      with conn:
        cursor = conn.execute(
          """
          INSERT INTO search_history (username, food, response, created_at)
          SELECT ?, ?, ?, ?
          WHERE EXISTS (SELECT 1 FROM users WHERE username = ?)
          """,
          (
            user.username,
            entry["food"],
            json.dumps(entry.get("response") or {}),
            _utc_now(),
            user.username,
          ),
        )
      if cursor.rowcount != 1:
        raise StoreError(f"User {user.username!r} no longer exists.")
    except sqlite3.DatabaseError as exc:
      raise StoreError(f"Failed to append search history: {exc}") from exc
    finally:
      conn.close()

    updated = self.find_by_username(user.username)
    if updated is None:
      raise StoreError(f"User {user.username!r} no longer exists.")
    return updated


def _to_dynamo_compatible(value: Any) -> Any:
  """Convert native Python types into structures acceptable by DynamoDB."""
  if isinstance(value, bool):
    return value
  if isinstance(value, float):
    return Decimal(str(value))
  if isinstance(value, Decimal):
    return value
  if isinstance(value, dict):
    return {str(key): _to_dynamo_compatible(val) for key, val in value.items()}
  if isinstance(value, (list, tuple)):
    return [_to_dynamo_compatible(item) for item in value]
  return value


def _from_dynamo(value: Any) -> Any:
  """Recursively convert DynamoDB Decimals into JSON friendly primitives."""
  if isinstance(value, Decimal):
    if value % 1 == 0:
      return int(value)
    return float(value)
  if isinstance(value, dict):
    return {key: _from_dynamo(val) for key, val in value.items()}
  if isinstance(value, list):
    return [_from_dynamo(item) for item in value]
  return value


def _is_conditional_failure(exc: ClientError) -> bool:
  return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _is_item_size_failure(exc: ClientError) -> bool:
  error = exc.response.get("Error", {})
  return error.get("Code") == "ValidationException" and "item size" in (error.get("Message") or "").lower()


class DynamoCredentialStore(CredentialStore):
  """
  DynamoDB-backed store.

  The users table is keyed on ``username``. Google-linked accounts are found
  through a global secondary index on ``google_token``.
  """

  def __init__(self, table, *, google_token_index: str = "google_token-index") -> None:
    self.table = table
    self.google_token_index = google_token_index

  @staticmethod
  def _item_to_user(item: Dict[str, Any]) -> User:
    parsed = _from_dynamo(item)
    return User(
      username=parsed["username"],
      password_hash=parsed.get("password_hash"),
      google_token=parsed.get("google_token"),
      created_at=parsed.get("created_at", ""),
      search_history=list(parsed.get("search_history") or []),
    )

  def _put_new(self, user: User) -> None:
    item: Dict[str, Any] = {
      "username": user.username,
      "created_at": user.created_at,
      "search_history": [],
    }
    if user.password_hash:
      item["password_hash"] = user.password_hash
    if user.google_token:
      item["google_token"] = user.google_token
    self.table.put_item(
      Item=_to_dynamo_compatible(item),
      ConditionExpression="attribute_not_exists(username)",
    )

  def find_by_username(self, username: str) -> Optional[User]:
    try:
      response = self.table.get_item(Key={"username": username}, ConsistentRead=True)
    except (BotoCoreError, ClientError) as exc:
      raise StoreError(f"User lookup failed: {exc}") from exc
    item = response.get("Item")
    if not item:
      return None
    return self._item_to_user(item)

  def find_by_google_token(self, token: str) -> Optional[User]:
    try:
      response = self.table.query(
        IndexName=self.google_token_index,
        KeyConditionExpression=Key("google_token").eq(token),
      )
    except (BotoCoreError, ClientError) as exc:
      raise StoreError(f"Google account lookup failed: {exc}") from exc
    items = response.get("Items") or []
    if not items:
      return None
    # The index only projects keys reliably; re-read the full item.
    return self.find_by_username(_from_dynamo(items[0])["username"])

  def create(self, username: str, password: str) -> User:
    user = User(
      username=username,
      password_hash=generate_password_hash(password),
      created_at=_utc_now(),
    )
    try:
      self._put_new(user)
    except ClientError as exc:
      if _is_conditional_failure(exc):
        raise Conflict() from exc
      raise StoreError(f"Account creation failed: {exc}") from exc
    except BotoCoreError as exc:
      raise StoreError(f"Account creation failed: {exc}") from exc
    return user

  def find_or_create_google_user(self, token: str) -> User:
    existing = self.find_by_google_token(token)
    if existing:
      return existing

    user = User(
      username=_generated_google_username(),
      google_token=token,
      created_at=_utc_now(),
    )
    try:
      self._put_new(user)
    except (BotoCoreError, ClientError) as exc:
      raise StoreError(f"Google account creation failed: {exc}") from exc
    return user

  def append_search_history(self, user: User, entry: Dict[str, Any]) -> User:
    try:
      response = self.table.update_item(
        Key={"username": user.username},
        UpdateExpression=(
          "SET search_history = list_append(if_not_exists(search_history, :empty), :entry)"
        ),
        ConditionExpression="attribute_exists(username)",
        ExpressionAttributeValues={
          ":empty": [],
          ":entry": [_to_dynamo_compatible(entry)],
        },
        ReturnValues="ALL_NEW",
      )
    except ClientError as exc:
      if _is_conditional_failure(exc):
        raise StoreError(f"User {user.username!r} no longer exists.") from exc
      if _is_item_size_failure(exc):
        raise StoreError(
          f"Search history for {user.username!r} has reached the DynamoDB item size limit."
        ) from exc
      raise StoreError(f"Failed to append search history: {exc}") from exc
    except BotoCoreError as exc:
      raise StoreError(f"Failed to append search history: {exc}") from exc
    return self._item_to_user(response["Attributes"])


__all__ = [
  "CredentialStore",
  "DynamoCredentialStore",
  "SqliteCredentialStore",
  "StoreError",
  "User",
]
