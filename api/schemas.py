"""
Pydantic schemas for the JSON bodies exchanged with the frontend.
"""

from __future__ import annotations

from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from api.errors import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class CredentialsPayload(BaseModel):
  username: str = Field(..., min_length=1, max_length=128)
  password: str = Field(..., min_length=1)

  @field_validator("username")
  @classmethod
  def _strip_username(cls, value: str) -> str:
    value = value.strip()
    if not value:
      raise ValueError("username must not be blank")
    return value


class GoogleLoginPayload(BaseModel):
  token: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
  token: str
  username: str


class CreateAccountResponse(BaseModel):
  success: bool = True
  message: str = "Account created successfully"


class GoogleLoginResponse(BaseModel):
  token: str


class HistoryEntry(BaseModel):
  food: str
  response: Dict[str, Any]


class SearchHistoryResponse(BaseModel):
  success: bool = True
  data: List[HistoryEntry]


def parse_body(schema: Type[SchemaT], payload: Any) -> SchemaT:
  """Validate a decoded JSON body, raising the API's 400 error on failure."""
  if not isinstance(payload, dict):
    raise ValidationError("Request body must be a JSON object.")
  try:
    return schema.model_validate(payload)
  except PydanticValidationError as exc:
    fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
    raise ValidationError(f"Invalid or missing fields: {', '.join(fields)}") from exc


__all__ = [
  "CreateAccountResponse",
  "CredentialsPayload",
  "GoogleLoginPayload",
  "GoogleLoginResponse",
  "HistoryEntry",
  "LoginResponse",
  "SearchHistoryResponse",
  "parse_body",
]
