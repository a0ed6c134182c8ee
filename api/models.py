"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Auth request bodies are lenient: every field is optional so that a missing
password or e-mail reaches AuthService and is answered with its own 401
message ("empty password", "email must be provided") instead of a 422.
Length caps still apply.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Role

# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body for POST /api/v1/auth/login. email accepts a username too."""

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class Ga2faRequest(BaseModel):
    """Body for POST /api/v1/auth/ga2fa.

    code is accepted as a string or a number and normalized to a string.
    Clients should send strings: a number loses any leading zero.
    """

    id: Optional[int] = None
    code: Optional[Union[str, int]] = None

    @field_validator("code", mode="before")
    @classmethod
    def stringify_code(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip()


class SignupRequest(BaseModel):
    """Body for POST /api/v1/auth/signup. Passwords are kept byte for byte."""

    username: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    confirm: Optional[str] = Field(default=None, max_length=255)

    @field_validator("username", "email")
    @classmethod
    def strip_identifier(cls, v):
        return v.strip() if isinstance(v, str) else v


class ForgotRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)


class ResetRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=255)


class LogoutRequest(BaseModel):
    """Body for POST /api/v1/auth/logout. id falls back to the session user."""

    id: Optional[int] = None


# ---------------------------------------------------------------------------
# Role models
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)


class RoleUpdate(BaseModel):
    """Body for PUT /api/v1/roles/{id}. users replaces the whole member set."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    enabled: bool = True
    users: list[int] = Field(default_factory=list, max_length=10000)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str
    enabled: bool
    removed: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    users: list[int] = Field(default_factory=list)

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            title=role.title,
            description=role.description,
            enabled=role.enabled,
            removed=role.lifecycle.at if role.is_removed else None,
            created=role.created,
            updated=role.updated,
            users=list(role.users),
        )


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    """Body of every 401 answered by an auth flow."""

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
