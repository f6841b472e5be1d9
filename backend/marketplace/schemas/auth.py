"""Auth-related schemas (token pair responses, refresh and logout payloads)."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from marketplace.core.sanitize import clean_single_line
from marketplace.schemas.user import UserOut


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class TokenRefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)

    @field_validator("refresh_token", mode="before")
    @classmethod
    def normalize_refresh_token(cls, value: str) -> str:
        return clean_single_line(value)


class LogoutRequest(BaseModel):
    refresh_token: str | None = Field(default=None, max_length=4096)
    logout_all: bool = False

    @field_validator("refresh_token", mode="before")
    @classmethod
    def normalize_refresh_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return clean_single_line(value) or None


class LogoutResponse(BaseModel):
    message: str = "logged_out"


class ActiveSessionsResponse(BaseModel):
    active_sessions: int
