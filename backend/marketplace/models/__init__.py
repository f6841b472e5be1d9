"""Convenience imports for Alembic metadata discovery."""

from marketplace.models.user import User
from marketplace.models.refresh_token import RefreshToken

__all__ = ["RefreshToken", "User"]
