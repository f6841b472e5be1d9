"""Security helpers for hashing passwords and issuing JWTs."""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import Any, Callable
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from marketplace.core.exceptions import ConfigError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

Clock = Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    return pwd_context.verify(password, hashed)


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header value.

    Absence and malformed values both yield ``None``; this never raises.
    """
    if not header or not isinstance(header, str):
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


@dataclass(frozen=True)
class TokenCodecConfig:
    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_ttl_seconds: int = 15 * 60
    refresh_ttl_seconds: int = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class IdentityClaims:
    """Identity fields embedded in both tokens of a pair."""

    subject_id: int
    username: str
    email: str


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    username: str
    email: str
    issued_at: dt.datetime
    expires_at: dt.datetime
    token_id: str

    @property
    def identity(self) -> IdentityClaims:
        return IdentityClaims(subject_id=self.subject_id, username=self.username, email=self.email)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: dt.datetime
    refresh_expires_at: dt.datetime
    access_ttl_seconds: int


class VerificationStatus(str, enum.Enum):
    valid = "valid"
    expired = "expired"
    invalid = "invalid"


@dataclass(frozen=True)
class TokenVerification:
    status: VerificationStatus
    claims: TokenClaims | None = None

    @property
    def ok(self) -> bool:
        return self.status is VerificationStatus.valid


_INVALID = TokenVerification(VerificationStatus.invalid)
_EXPIRED = TokenVerification(VerificationStatus.expired)


class TokenCodec:
    """Signs and verifies access/refresh JWTs.

    Stateless: output depends only on the configured secrets, the claims and
    the clock. Access and refresh tokens use independent secrets so a leaked
    access secret cannot be used to forge refresh tokens.
    """

    def __init__(self, config: TokenCodecConfig, *, clock: Clock = utcnow) -> None:
        if not (config.access_secret or "").strip():
            raise ConfigError("Missing access token secret", setting="JWT_ACCESS_SECRET")
        if not (config.refresh_secret or "").strip():
            raise ConfigError("Missing refresh token secret", setting="JWT_REFRESH_SECRET")
        if config.access_secret == config.refresh_secret:
            raise ConfigError("Access and refresh secrets must differ", setting="JWT_REFRESH_SECRET")
        if config.access_ttl_seconds <= 0 or config.refresh_ttl_seconds <= 0:
            raise ConfigError("Token lifetimes must be positive")
        self._config = config
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._config.access_ttl_seconds

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._config.refresh_ttl_seconds

    def issue_pair(self, claims: IdentityClaims) -> TokenPair:
        now = self._clock()
        access_token, access_expires_at = self._sign(
            claims,
            now=now,
            ttl_seconds=self._config.access_ttl_seconds,
            secret=self._config.access_secret,
            token_type=ACCESS_TOKEN_TYPE,
        )
        refresh_token, refresh_expires_at = self._sign(
            claims,
            now=now,
            ttl_seconds=self._config.refresh_ttl_seconds,
            secret=self._config.refresh_secret,
            token_type=REFRESH_TOKEN_TYPE,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            access_ttl_seconds=self._config.access_ttl_seconds,
        )

    def verify_access(self, token: str | None) -> TokenVerification:
        return self._verify(token, secret=self._config.access_secret, expected_type=ACCESS_TOKEN_TYPE)

    def verify_refresh(self, token: str | None) -> TokenVerification:
        return self._verify(token, secret=self._config.refresh_secret, expected_type=REFRESH_TOKEN_TYPE)

    def _sign(
        self,
        claims: IdentityClaims,
        *,
        now: dt.datetime,
        ttl_seconds: int,
        secret: str,
        token_type: str,
    ) -> tuple[str, dt.datetime]:
        issued_at = int(now.timestamp())
        expires_at = issued_at + ttl_seconds
        payload: dict[str, Any] = {
            "sub": str(claims.subject_id),
            "username": claims.username,
            "email": claims.email,
            "iat": issued_at,
            "exp": expires_at,
            "jti": uuid4().hex,
            "type": token_type,
        }
        token = jwt.encode(payload, secret, algorithm=self._config.algorithm)
        return token, dt.datetime.fromtimestamp(expires_at, tz=dt.timezone.utc)

    def _verify(self, token: str | None, *, secret: str, expected_type: str) -> TokenVerification:
        if not token or not isinstance(token, str):
            return _INVALID
        try:
            # Expiry is checked below against the injected clock.
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._config.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return _INVALID

        if payload.get("type") != expected_type:
            return _INVALID
        try:
            subject_id = int(payload["sub"])
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
            username = str(payload["username"])
            email = str(payload["email"])
        except (KeyError, TypeError, ValueError):
            return _INVALID

        if self._clock().timestamp() > expires_at:
            return _EXPIRED

        return TokenVerification(
            VerificationStatus.valid,
            TokenClaims(
                subject_id=subject_id,
                username=username,
                email=email,
                issued_at=dt.datetime.fromtimestamp(issued_at, tz=dt.timezone.utc),
                expires_at=dt.datetime.fromtimestamp(expires_at, tz=dt.timezone.utc),
                token_id=str(payload.get("jti") or ""),
            ),
        )
