from __future__ import annotations

import datetime as dt
import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REFRESH_TOKEN_CLEANUP_ENABLED", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from marketplace.core.security import TokenCodec, TokenCodecConfig, hash_password  # noqa: E402
from marketplace.db.base import Base  # noqa: E402
from marketplace.models.user import User  # noqa: E402
from marketplace.services.auth import AuthSessionService  # noqa: E402
from marketplace.services.session_store import SessionStore  # noqa: E402
from marketplace.services.users import UserRepository  # noqa: E402

ACCESS_TTL = 15 * 60
REFRESH_TTL = 7 * 24 * 60 * 60
PASSWORD = "correct-horse-battery"


class FakeClock:
    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + dt.timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2026, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def codec_config() -> TokenCodecConfig:
    return TokenCodecConfig(
        access_secret="unit-access-secret",
        refresh_secret="unit-refresh-secret",
        access_ttl_seconds=ACCESS_TTL,
        refresh_ttl_seconds=REFRESH_TTL,
    )


@pytest.fixture
def codec(codec_config: TokenCodecConfig, clock: FakeClock) -> TokenCodec:
    return TokenCodec(codec_config, clock=clock)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def _make_user(db: Session, username: str, email: str) -> User:
    user = User(username=username, email=email, password_hash=hash_password(PASSWORD))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db: Session) -> User:
    return _make_user(db, "farmer_joe", "joe@example.com")


@pytest.fixture
def other_user(db: Session) -> User:
    return _make_user(db, "market_ann", "ann@example.com")


@pytest.fixture
def store(db: Session, clock: FakeClock) -> SessionStore:
    return SessionStore(db, clock=clock)


@pytest.fixture
def service(codec: TokenCodec, store: SessionStore, db: Session) -> AuthSessionService:
    return AuthSessionService(codec, store, UserRepository(db))


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)
