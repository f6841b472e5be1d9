"""Persistent store of issued refresh tokens.

The store owns every ``refresh_tokens`` row: it inserts them, consumes them
with a compare-and-set update, revokes them, counts them and garbage collects
them. A row is valid iff it is not revoked, not used and not yet expired, and
every query below enforces that predicate in SQL so a read cannot race a
concurrent consumer.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import logging

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.exceptions import PersistenceError, RefreshTokenNotFoundError
from marketplace.core.security import Clock, utcnow
from marketplace.models.refresh_token import RefreshToken, as_utc

logger = logging.getLogger(__name__)


def hash_refresh_token(token: str) -> str:
    if not token:
        raise ValueError("Refresh token is required")
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _valid_at(now: dt.datetime):
    return (
        RefreshToken.used_at.is_(None),
        RefreshToken.revoked.is_(False),
        RefreshToken.expires_at > now,
    )


class SessionStore:
    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def _now(self) -> dt.datetime:
        return as_utc(self._clock())

    def _fail(self, operation: str, exc: SQLAlchemyError) -> PersistenceError:
        try:
            self.db.rollback()
        except SQLAlchemyError:
            logger.warning("Session store rollback after %s failed", operation, exc_info=True)
        logger.warning("Session store %s failed: %s", operation, exc.__class__.__name__)
        return PersistenceError(operation=operation)

    def store(self, identity_id: int, token: str, expires_at: dt.datetime) -> RefreshToken:
        record = RefreshToken(
            user_id=identity_id,
            token_hash=hash_refresh_token(token),
            created_at=self._now(),
            expires_at=as_utc(expires_at),
            revoked=False,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("store", exc) from exc
        return record

    def find_valid(self, token: str) -> RefreshToken | None:
        if not token:
            return None
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(token), *_valid_at(self._now()))
            .execution_options(populate_existing=True)
        )
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise self._fail("find_valid", exc) from exc

    def find(self, token: str) -> RefreshToken | None:
        """Return the row for ``token`` whatever its state."""
        if not token:
            return None
        stmt = (
            select(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(token))
            .execution_options(populate_existing=True)
        )
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise self._fail("find", exc) from exc

    def mark_used(self, token: str) -> bool:
        """Consume ``token``. Returns False when it was already consumed or unknown."""
        if not token:
            return False
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(token), RefreshToken.used_at.is_(None))
            .values(used_at=self._now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("mark_used", exc) from exc
        return result.rowcount == 1

    def rotate(
        self,
        old_token: str,
        identity_id: int,
        new_token: str,
        expires_at: dt.datetime,
    ) -> RefreshToken:
        """Consume ``old_token`` and persist ``new_token`` in one transaction.

        Only one caller can win the compare-and-set on the old row; losers get
        ``RefreshTokenNotFoundError`` and nothing is written for them.
        """
        now = self._now()
        consume = (
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_refresh_token(old_token),
                RefreshToken.user_id == identity_id,
                *_valid_at(now),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        record = RefreshToken(
            user_id=identity_id,
            token_hash=hash_refresh_token(new_token),
            created_at=now,
            expires_at=as_utc(expires_at),
            revoked=False,
        )
        try:
            result = self.db.execute(consume)
            if result.rowcount != 1:
                self.db.rollback()
                raise RefreshTokenNotFoundError()
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("rotate", exc) from exc
        return record

    def revoke_all_for_user(self, identity_id: int) -> int:
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == identity_id, *_valid_at(self._now()))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("revoke_all_for_user", exc) from exc
        logger.info("Revoked %s refresh tokens for user %s", result.rowcount, identity_id)
        return result.rowcount

    def count_active(self, identity_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(RefreshToken)
            .where(RefreshToken.user_id == identity_id, *_valid_at(self._now()))
        )
        try:
            return int(self.db.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise self._fail("count_active", exc) from exc

    def cleanup_expired(self) -> int:
        stmt = (
            delete(RefreshToken)
            .where(
                or_(
                    RefreshToken.expires_at <= self._now(),
                    RefreshToken.used_at.is_not(None),
                    RefreshToken.revoked.is_(True),
                )
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("cleanup_expired", exc) from exc
        return result.rowcount
