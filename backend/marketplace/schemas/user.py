"""Pydantic schemas for user payloads and responses."""

from __future__ import annotations

import re
import unicodedata

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from marketplace.core.sanitize import clean_email, clean_single_line

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _validate_password(value: str) -> str:
    if any(unicodedata.category(ch) == "Cc" for ch in value):
        raise ValueError("password_contains_control_chars")
    if not value.strip():
        raise ValueError("password_required")
    return value


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)

    @field_validator("username", mode="before")
    @classmethod
    def normalize_username(cls, value: str) -> str:
        cleaned = clean_single_line(value)
        if cleaned and not USERNAME_PATTERN.fullmatch(cleaned):
            raise ValueError("invalid_username")
        return cleaned

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class UserLogin(BaseModel):
    # Either an email address or a username.
    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("identifier", mode="before")
    @classmethod
    def normalize_identifier(cls, value: str) -> str:
        return clean_single_line(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class UserOut(BaseModel):
    id: int
    username: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class MeResponse(BaseModel):
    user: UserOut
    active_sessions: int
