"""Common FastAPI dependencies for authentication and service wiring."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from marketplace.core.config import settings
from marketplace.core.exceptions import InvalidOrExpiredTokenError, NotAuthenticatedError
from marketplace.core.security import TokenCodec, VerificationStatus, extract_bearer
from marketplace.db.session import get_db
from marketplace.services.auth import AuthSessionService
from marketplace.services.session_store import SessionStore
from marketplace.services.users import UserRepository


@dataclass(frozen=True)
class AuthenticatedIdentity:
    id: int
    username: str
    email: str


class RequestAuthenticator:
    """Authenticates requests from the access token alone.

    Never touches the database: the signature and expiry inside the token are
    trusted until it expires, so revoking refresh tokens does not cut off an
    already-issued access token.
    """

    def __init__(self, codec: TokenCodec) -> None:
        self.codec = codec

    def authenticate(self, authorization: str | None) -> AuthenticatedIdentity:
        token = extract_bearer(authorization)
        if token is None:
            raise NotAuthenticatedError()

        verification = self.codec.verify_access(token)
        if verification.status is VerificationStatus.expired:
            raise InvalidOrExpiredTokenError(expired=True)
        if not verification.ok or verification.claims is None:
            raise InvalidOrExpiredTokenError()

        claims = verification.claims
        return AuthenticatedIdentity(id=claims.subject_id, username=claims.username, email=claims.email)


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_request_authenticator(request: Request) -> RequestAuthenticator:
    return request.app.state.request_authenticator


def get_current_identity(
    request: Request,
    authenticator: RequestAuthenticator = Depends(get_request_authenticator),
) -> AuthenticatedIdentity:
    identity = authenticator.authenticate(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


def get_auth_service(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthSessionService:
    return AuthSessionService(
        codec,
        SessionStore(db),
        UserRepository(db),
        revoke_sessions_on_reuse=settings.REVOKE_SESSIONS_ON_REFRESH_REUSE,
    )
