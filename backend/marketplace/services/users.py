"""Identity repository: user lookup by credential and registration."""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core.exceptions import ConflictError
from marketplace.core.security import hash_password
from marketplace.models.user import User
from marketplace.schemas.user import UserCreate

logger = logging.getLogger(__name__)


def is_email_identifier(identifier: str) -> bool:
    return "@" in identifier


class UserRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, identity_id: int) -> User | None:
        return self.db.get(User, identity_id)

    def find_by_credential(self, identifier: str) -> User | None:
        """Look a user up by email when ``identifier`` contains '@', else by username."""
        cleaned = (identifier or "").strip()
        if not cleaned:
            return None
        if is_email_identifier(cleaned):
            stmt = select(User).where(User.email == cleaned.lower())
        else:
            stmt = select(User).where(func.lower(User.username) == cleaned.lower())
        return self.db.execute(stmt).scalars().first()

    def exists(self, *, username: str, email: str) -> bool:
        stmt = select(User.id).where(
            or_(func.lower(User.username) == username.lower(), User.email == email.lower())
        )
        return self.db.execute(stmt).first() is not None

    def create(self, data: UserCreate) -> User:
        if self.exists(username=data.username, email=data.email):
            raise ConflictError("user_exists", details={"username": data.username, "email": data.email})

        user = User(
            username=data.username,
            email=data.email.lower(),
            password_hash=hash_password(data.password),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("user_exists", details={"username": data.username, "email": data.email}) from exc
        self.db.refresh(user)
        logger.info("User created: %s", user.username)
        return user
