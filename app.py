"""
Flask backend for the nutrition search app.

Users sign up with a username and password (or arrive through Google OAuth),
log in to receive a short-lived JWT, and look foods up through the external
nutrition API. Every successful lookup is appended to the user's search
history, which is persisted in SQLite (development) or DynamoDB (production).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import boto3
from dotenv import load_dotenv
from flask import Flask, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from api.accounts import create_account, google_login, login
from api.credential_store import (
  CredentialStore,
  DynamoCredentialStore,
  SqliteCredentialStore,
  StoreError,
  User,
)
from api.errors import Forbidden, InternalError, NotFound, ServiceError, Unauthenticated
from api.nutrition_service import DEFAULT_NUTRITION_API_URL, NutritionClient
from api.schemas import (
  CreateAccountResponse,
  CredentialsPayload,
  GoogleLoginPayload,
  GoogleLoginResponse,
  LoginResponse,
  SearchHistoryResponse,
  parse_body,
)
from api.search import search_food
from api.tokens import DEFAULT_EXPIRATION_MINUTES, InvalidToken, TokenService

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")

DEFAULT_FRONTEND_ORIGIN = "http://localhost:5173"
CORS_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]


def _safe_int(value: Optional[str], default: int) -> int:
  try:
    return int(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _safe_float(value: Optional[str], default: float) -> float:
  try:
    return float(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _safe_log_level(value: Optional[str], default: str = "INFO") -> str:
  """Return ``value`` if it names a logging level, otherwise ``default``."""
  level = (value or "").strip().upper()
  if isinstance(logging.getLevelName(level), int):
    return level
  return default


def _config_from_env() -> Dict[str, Any]:
  """Collect the recognised options from the process environment."""
  return {
    "STORAGE_BACKEND": os.environ.get("STORAGE_BACKEND", "sqlite").strip().lower(),
    "SQLITE_DB_PATH": os.environ.get("SQLITE_DB_PATH", str(BASE_DIR / "users.db")),
    "AWS_USERS_TABLE": os.environ.get("AWS_USERS_TABLE", "").strip(),
    "AWS_GOOGLE_TOKEN_INDEX": os.environ.get("AWS_GOOGLE_TOKEN_INDEX", "google_token-index").strip(),
    "SESSION_KEY": os.environ.get("SESSION_KEY", "change-me"),
    "JWT_SECRET_KEY": os.environ.get("JWT_SECRET_KEY", "change-me"),
    "JWT_EXPIRATION_MINUTES": _safe_int(
      os.environ.get("JWT_EXPIRATION_MINUTES"), DEFAULT_EXPIRATION_MINUTES
    ),
    "API_KEY": os.environ.get("API_KEY", "").strip(),
    "NUTRITION_API_URL": (os.environ.get("NUTRITION_API_URL") or DEFAULT_NUTRITION_API_URL).strip(),
    "NUTRITION_API_TIMEOUT": _safe_float(os.environ.get("NUTRITION_API_TIMEOUT"), 10.0),
    "FRONTEND_ORIGIN": os.environ.get("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN).strip(),
    "LOG_LEVEL": _safe_log_level(os.environ.get("LOG_LEVEL")),
  }


def _build_dynamo_table(table_name: str):
  """Return a DynamoDB Table resource bound to the configured region."""
  region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
  resource_kwargs: Dict[str, Any] = {}
  if region:
    resource_kwargs["region_name"] = region
  dynamo = boto3.resource("dynamodb", **resource_kwargs)
  return dynamo.Table(table_name)


def _build_credential_store(config: Mapping[str, Any]) -> CredentialStore:
  """Construct the store selected by ``STORAGE_BACKEND``."""
  if config["STORAGE_BACKEND"] == "aws":
    table_name = config.get("AWS_USERS_TABLE")
    if not table_name:
      raise RuntimeError("AWS_USERS_TABLE must be set when STORAGE_BACKEND=aws.")
    return DynamoCredentialStore(
      _build_dynamo_table(table_name),
      google_token_index=config["AWS_GOOGLE_TOKEN_INDEX"],
    )
  return SqliteCredentialStore(config["SQLITE_DB_PATH"])


def get_store() -> CredentialStore:
  """Return the credential store bound to the current app."""
  return current_app.extensions["credential_store"]


def get_token_service() -> TokenService:
  """Return the token service bound to the current app."""
  return current_app.extensions["token_service"]


def get_nutrition_client() -> NutritionClient:
  """Return the nutrition API client bound to the current app."""
  return current_app.extensions["nutrition_client"]


def _bearer_token() -> Optional[str]:
  """Return the token from an ``Authorization: Bearer <token>`` header, if any."""
  auth_header = request.headers.get("Authorization", "")
  if not auth_header.startswith("Bearer "):
    return None
  token = auth_header.split(" ", 1)[1].strip()
  return token or None


def resolve_request_user() -> User:
  """Resolve the request's bearer token to a stored user or raise."""
  token = _bearer_token()
  if token is None:
    raise Unauthenticated()

  try:
    username = get_token_service().verify(token)
  except InvalidToken as exc:
    current_app.logger.info("Rejected bearer token: %s", exc.reason)
    raise Forbidden() from exc

  try:
    user = get_store().find_by_username(username)
  except StoreError as exc:
    current_app.logger.exception("User lookup failed for a verified token")
    raise InternalError() from exc
  if user is None:
    raise NotFound()
  return user


def require_user(view: Callable[..., Any]) -> Callable[..., Any]:
  """Run ``view`` only for requests carrying a valid token of an existing user."""

  @wraps(view)
  def wrapper(*args: Any, **kwargs: Any) -> Any:
    g.user = resolve_request_user()
    return view(*args, **kwargs)

  return wrapper


def create_app(
  test_config: Optional[Mapping[str, Any]] = None,
  *,
  store: Optional[CredentialStore] = None,
  nutrition_client: Optional[NutritionClient] = None,
) -> Flask:
  """Instantiate the Flask application and register routes."""
  app = Flask(__name__)
  app.config.update(_config_from_env())
  if test_config:
    app.config.update(test_config)

  app.secret_key = app.config["SESSION_KEY"]
  app.config["LOG_LEVEL"] = _safe_log_level(app.config.get("LOG_LEVEL"))
  app.logger.setLevel(app.config["LOG_LEVEL"])
  CORS(
    app,
    resources={r"/*": {"origins": app.config["FRONTEND_ORIGIN"]}},
    methods=CORS_METHODS,
    supports_credentials=True,
  )

  app.extensions["credential_store"] = store or _build_credential_store(app.config)
  app.extensions["token_service"] = TokenService(
    app.config["JWT_SECRET_KEY"],
    expiration_minutes=app.config["JWT_EXPIRATION_MINUTES"],
  )
  app.extensions["nutrition_client"] = nutrition_client or NutritionClient(
    url=app.config["NUTRITION_API_URL"],
    api_key=app.config["API_KEY"] or None,
    timeout=app.config["NUTRITION_API_TIMEOUT"],
  )

  @app.errorhandler(ServiceError)
  def handle_service_error(exc: ServiceError):
    return jsonify(exc.to_payload()), exc.status_code

  @app.errorhandler(Exception)
  def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
      return jsonify({"error": exc.description}), exc.code
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal Server Error"}), 500

  @app.route("/test", methods=["GET"])
  def test() -> str:
    """Check that the server is reachable."""
    return "Server is working!"

  @app.route("/health", methods=["GET"])
  def health() -> Tuple[Dict[str, str], int]:
    """Simple health-check endpoint."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}, 200

  @app.route("/login", methods=["POST"])
  def login_route() -> Tuple[Dict[str, Any], int]:
    """Authenticate an existing user and return a JWT."""
    payload = parse_body(CredentialsPayload, request.get_json(silent=True))
    try:
      result = login(get_store(), get_token_service(), payload.username, payload.password)
    except StoreError as exc:
      app.logger.exception("Error during login: %s", exc)
      return {"error": "An error occurred during login"}, 500
    return LoginResponse(**result).model_dump(), 200

  @app.route("/create-account", methods=["POST"])
  def create_account_route() -> Tuple[Dict[str, Any], int]:
    """Register a new account."""
    payload = parse_body(CredentialsPayload, request.get_json(silent=True))
    try:
      create_account(get_store(), payload.username, payload.password)
    except StoreError as exc:
      app.logger.exception("Error creating account: %s", exc)
      return {"error": "An error occurred. Please try again."}, 500
    return CreateAccountResponse().model_dump(), 201

  @app.route("/google-login", methods=["POST"])
  def google_login_route() -> Tuple[Dict[str, Any], int]:
    """Link an already verified Google token to an account and echo it back."""
    payload = parse_body(GoogleLoginPayload, request.get_json(silent=True))
    try:
      result = google_login(get_store(), payload.token)
    except StoreError as exc:
      app.logger.exception("Error during Google OAuth login: %s", exc)
      return {"error": "An error occurred during login"}, 500
    return GoogleLoginResponse(**result).model_dump(), 200

  @app.route("/api/search-history", methods=["GET"])
  @require_user
  def search_history() -> Tuple[Dict[str, Any], int]:
    """Return the caller's search history, oldest first."""
    return SearchHistoryResponse(data=g.user.search_history).model_dump(), 200

  @app.route("/api/<food>", methods=["GET"])
  @require_user
  def nutrition_search(food: str):
    """Look ``food`` up upstream and record it in the caller's history."""
    payload = search_food(get_store(), get_nutrition_client(), g.get("user"), food)
    return jsonify(payload), 200

  return app


if __name__ == "__main__":
  logging.basicConfig(level=_safe_log_level(os.environ.get("LOG_LEVEL")))
  flask_app = create_app()
  try:
    flask_app.run(host="0.0.0.0", port=_safe_int(os.environ.get("PORT"), 3000), debug=True)
  finally:
    flask_app.extensions["credential_store"].close()
