"""Authentication endpoints (register, login, refresh, logout, me)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.core.deps import AuthenticatedIdentity, get_auth_service, get_current_identity
from marketplace.core.exceptions import NotAuthenticatedError
from marketplace.db.session import get_db
from marketplace.schemas.auth import (
    ActiveSessionsResponse,
    LogoutRequest,
    LogoutResponse,
    TokenRefreshRequest,
    TokenResponse,
)
from marketplace.schemas.user import MeResponse, UserCreate, UserLogin, UserOut
from marketplace.services.auth import AuthResult, AuthSessionService
from marketplace.services.users import UserRepository

router = APIRouter()


def _token_response(result: AuthResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        user=UserOut.model_validate(result.user),
    )


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserCreate, db: Session = Depends(get_db)) -> UserOut:
    user = UserRepository(db).create(payload)
    return UserOut.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login_user(payload: UserLogin, service: AuthSessionService = Depends(get_auth_service)) -> TokenResponse:
    return _token_response(service.login(payload.identifier, payload.password))


@router.post("/refresh", response_model=TokenResponse)
def refresh_tokens(
    payload: TokenRefreshRequest,
    service: AuthSessionService = Depends(get_auth_service),
) -> TokenResponse:
    return _token_response(service.refresh(payload.refresh_token))


@router.post("/logout", response_model=LogoutResponse)
def logout_user(
    payload: LogoutRequest | None = None,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: AuthSessionService = Depends(get_auth_service),
) -> LogoutResponse:
    payload = payload or LogoutRequest()
    service.logout(payload.refresh_token, logout_all=payload.logout_all, identity_id=identity.id)
    return LogoutResponse()


@router.get("/me", response_model=MeResponse)
def me(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    service: AuthSessionService = Depends(get_auth_service),
) -> MeResponse:
    user = UserRepository(db).get(identity.id)
    if user is None:
        raise NotAuthenticatedError("user_not_found")
    return MeResponse(user=UserOut.model_validate(user), active_sessions=service.active_session_count(identity.id))


@router.get("/sessions/active", response_model=ActiveSessionsResponse)
def active_sessions(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: AuthSessionService = Depends(get_auth_service),
) -> ActiveSessionsResponse:
    return ActiveSessionsResponse(active_sessions=service.active_session_count(identity.id))
