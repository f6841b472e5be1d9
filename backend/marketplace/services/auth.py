"""Session lifecycle: login, refresh token rotation and logout.

Refresh tokens move through ``ISSUED -> VALID -> {USED, EXPIRED, REVOKED}``
and never return to VALID. Only the session store mutates their rows; this
service decides when.

Access tokens are stateless and cannot be revoked before they expire. A
leaked access token stays usable for at most the access TTL, which is why
that TTL is short.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from marketplace.core.exceptions import (
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    PersistenceError,
    RefreshTokenNotFoundError,
)
from marketplace.core.security import (
    IdentityClaims,
    TokenCodec,
    TokenPair,
    VerificationStatus,
    verify_password,
)
from marketplace.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class IdentityRecord(Protocol):
    id: int
    username: str
    email: str
    password_hash: str


class IdentityRepository(Protocol):
    def find_by_credential(self, identifier: str) -> IdentityRecord | None: ...

    def get(self, identity_id: int) -> IdentityRecord | None: ...


@dataclass(frozen=True)
class PublicIdentity:
    id: int
    username: str
    email: str


@dataclass(frozen=True)
class AuthResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user: PublicIdentity


def _public(claims: IdentityClaims) -> PublicIdentity:
    return PublicIdentity(id=claims.subject_id, username=claims.username, email=claims.email)


class AuthSessionService:
    def __init__(
        self,
        codec: TokenCodec,
        store: SessionStore,
        users: IdentityRepository,
        *,
        password_verifier: Callable[[str, str], bool] = verify_password,
        revoke_sessions_on_reuse: bool = True,
    ) -> None:
        self.codec = codec
        self.store = store
        self.users = users
        self._verify_password = password_verifier
        self.revoke_sessions_on_reuse = revoke_sessions_on_reuse

    def _result(self, pair: TokenPair, claims: IdentityClaims) -> AuthResult:
        return AuthResult(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.access_ttl_seconds,
            user=_public(claims),
        )

    def login(self, identifier: str, password: str) -> AuthResult:
        user = self.users.find_by_credential(identifier)
        if user is None or not self._verify_password(password, user.password_hash):
            logger.warning("Login failed for identifier %s", identifier)
            raise InvalidCredentialsError()

        claims = IdentityClaims(subject_id=user.id, username=user.username, email=user.email)
        pair = self.codec.issue_pair(claims)
        try:
            self.store.store(user.id, pair.refresh_token, pair.refresh_expires_at)
        except PersistenceError:
            # The access token alone is a usable session for its short lifetime.
            logger.exception("Refresh token storage failed during login for user %s", user.id)
        else:
            logger.info("User logged in: %s", user.username)
        return self._result(pair, claims)

    def refresh(self, refresh_token: str) -> AuthResult:
        verification = self.codec.verify_refresh(refresh_token)
        if verification.status is VerificationStatus.expired:
            # Expired collapses into "not found" like every other dead token.
            raise RefreshTokenNotFoundError()
        if not verification.ok or verification.claims is None:
            raise InvalidRefreshTokenError()
        claims = verification.claims.identity

        record = self.store.find_valid(refresh_token)
        if record is None:
            self._detect_reuse(refresh_token)
            raise RefreshTokenNotFoundError()
        if record.user_id != claims.subject_id:
            logger.warning("Refresh token subject mismatch for record %s", record.id)
            raise RefreshTokenNotFoundError()

        user = self.users.get(claims.subject_id)
        if user is not None:
            claims = IdentityClaims(subject_id=user.id, username=user.username, email=user.email)

        pair = self.codec.issue_pair(claims)
        self.store.rotate(refresh_token, claims.subject_id, pair.refresh_token, pair.refresh_expires_at)
        logger.info("Refresh token rotated for user %s", claims.subject_id)
        return self._result(pair, claims)

    def _detect_reuse(self, refresh_token: str) -> None:
        record = self.store.find(refresh_token)
        if record is None or record.used_at is None:
            return
        logger.warning("Reuse of consumed refresh token detected for user %s", record.user_id)
        if self.revoke_sessions_on_reuse:
            self.store.revoke_all_for_user(record.user_id)

    def logout(
        self,
        refresh_token: str | None,
        logout_all: bool = False,
        identity_id: int | None = None,
    ) -> None:
        if refresh_token:
            self.store.mark_used(refresh_token)

        if not logout_all:
            return
        if identity_id is None and refresh_token:
            verification = self.codec.verify_refresh(refresh_token)
            if verification.ok and verification.claims is not None:
                identity_id = verification.claims.subject_id
        if identity_id is None:
            logger.info("Logout-all requested without a resolvable identity")
            return
        self.store.revoke_all_for_user(identity_id)

    def active_session_count(self, identity_id: int) -> int:
        return self.store.count_active(identity_id)
