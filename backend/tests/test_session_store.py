from __future__ import annotations

import datetime as dt
import sqlite3
import threading

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from marketplace.core.config import Settings
from marketplace.core.exceptions import PersistenceError, RefreshTokenNotFoundError
from marketplace.db.base import Base
from marketplace.db.session import engine_options
from marketplace.models.refresh_token import RefreshToken
from marketplace.models.user import User
from marketplace.services.session_store import SessionStore, hash_refresh_token

DAY = 24 * 60 * 60


def _expires(clock, days: int = 7) -> dt.datetime:
    return clock.now + dt.timedelta(days=days)


def test_store_then_find_valid(store: SessionStore, user, clock) -> None:
    record = store.store(user.id, "token-a", _expires(clock))

    found = store.find_valid("token-a")
    assert found is not None
    assert found.id == record.id
    assert found.user_id == user.id
    assert found.used_at is None and found.revoked is False
    assert store.find_valid("token-unknown") is None
    assert store.find_valid("") is None


def test_store_keeps_only_token_digest(store: SessionStore, db: Session, user, clock) -> None:
    store.store(user.id, "token-a", _expires(clock))

    row = db.execute(select(RefreshToken)).scalar_one()
    assert row.token_hash == hash_refresh_token("token-a")
    assert "token-a" not in row.token_hash


def test_store_rejects_duplicate_token(store: SessionStore, user, clock) -> None:
    store.store(user.id, "token-a", _expires(clock))

    with pytest.raises(PersistenceError) as exc_info:
        store.store(user.id, "token-a", _expires(clock))
    assert exc_info.value.details == {"operation": "store"}
    # The session is usable again after the failed insert.
    assert store.find_valid("token-a") is not None


def test_mark_used_is_single_use_and_idempotent(store: SessionStore, user, clock) -> None:
    store.store(user.id, "token-a", _expires(clock))

    assert store.mark_used("token-a") is True
    assert store.mark_used("token-a") is False
    assert store.find_valid("token-a") is None

    record = store.find("token-a")
    assert record is not None
    assert record.used_at is not None


def test_find_valid_respects_expiry(store: SessionStore, user, clock) -> None:
    store.store(user.id, "token-a", clock.now + dt.timedelta(seconds=60))

    clock.advance(59)
    assert store.find_valid("token-a") is not None
    clock.advance(1)
    assert store.find_valid("token-a") is None
    assert store.count_active(user.id) == 0


def test_revoke_all_for_user_only_touches_that_user(store: SessionStore, user, other_user, clock) -> None:
    store.store(user.id, "joe-1", _expires(clock))
    store.store(user.id, "joe-2", _expires(clock))
    store.store(other_user.id, "ann-1", _expires(clock))

    assert store.revoke_all_for_user(user.id) == 2

    assert store.find_valid("joe-1") is None
    assert store.find_valid("joe-2") is None
    assert store.find_valid("ann-1") is not None
    assert store.count_active(user.id) == 0
    assert store.count_active(other_user.id) == 1


def test_count_active_ignores_used_revoked_and_expired(store: SessionStore, user, other_user, clock) -> None:
    store.store(user.id, "live", _expires(clock))
    store.store(user.id, "used", _expires(clock))
    store.store(user.id, "short", clock.now + dt.timedelta(seconds=10))
    store.store(other_user.id, "other", _expires(clock))
    store.mark_used("used")
    clock.advance(11)

    assert store.count_active(user.id) == 1


def test_cleanup_never_removes_valid_rows(store: SessionStore, db: Session, user, other_user, clock) -> None:
    store.store(user.id, "live", _expires(clock))
    store.store(user.id, "used", _expires(clock))
    store.store(user.id, "short", clock.now + dt.timedelta(seconds=10))
    store.store(other_user.id, "revoked", _expires(clock))
    store.mark_used("used")
    store.revoke_all_for_user(other_user.id)
    clock.advance(11)

    removed = store.cleanup_expired()

    assert removed == 3
    remaining = db.execute(select(RefreshToken.token_hash)).scalars().all()
    assert remaining == [hash_refresh_token("live")]
    assert store.find_valid("live") is not None


def test_rotate_consumes_old_and_stores_new(store: SessionStore, user, clock) -> None:
    store.store(user.id, "old", _expires(clock))

    new_record = store.rotate("old", user.id, "new", _expires(clock))

    assert new_record.user_id == user.id
    assert store.find_valid("old") is None
    assert store.find_valid("new") is not None
    assert store.find("old").used_at is not None


def test_rotate_loser_gets_not_found(store: SessionStore, user, clock) -> None:
    store.store(user.id, "old", _expires(clock))
    store.rotate("old", user.id, "new-1", _expires(clock))

    with pytest.raises(RefreshTokenNotFoundError):
        store.rotate("old", user.id, "new-2", _expires(clock))
    assert store.find("new-2") is None


def test_rotate_rejects_foreign_identity(store: SessionStore, user, other_user, clock) -> None:
    store.store(user.id, "old", _expires(clock))

    with pytest.raises(RefreshTokenNotFoundError):
        store.rotate("old", other_user.id, "new", _expires(clock))
    assert store.find_valid("old") is not None


def test_rotate_is_atomic_when_new_row_fails(store: SessionStore, user, clock) -> None:
    store.store(user.id, "old", _expires(clock))
    store.store(user.id, "taken", _expires(clock))

    with pytest.raises(PersistenceError):
        store.rotate("old", user.id, "taken", _expires(clock))

    # Consuming the old token was rolled back with the failed insert.
    assert store.find_valid("old") is not None
    assert store.count_active(user.id) == 2


def test_database_errors_become_persistence_errors(store: SessionStore, monkeypatch) -> None:
    def broken_execute(*args, **kwargs):  # noqa: ANN002, ANN003
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(store.db, "execute", broken_execute)

    with pytest.raises(PersistenceError):
        store.find_valid("token-a")
    with pytest.raises(PersistenceError):
        store.revoke_all_for_user(1)
    with pytest.raises(PersistenceError):
        store.count_active(1)


def test_failed_rollback_still_reports_persistence_error(store: SessionStore, monkeypatch) -> None:
    def broken_execute(*args, **kwargs):  # noqa: ANN002, ANN003
        raise OperationalError("UPDATE refresh_tokens", {}, Exception("server closed the connection"))

    def broken_rollback():
        raise OperationalError("ROLLBACK", {}, Exception("server closed the connection"))

    monkeypatch.setattr(store.db, "execute", broken_execute)
    monkeypatch.setattr(store.db, "rollback", broken_rollback)

    with pytest.raises(PersistenceError) as exc_info:
        store.mark_used("token-a")
    assert exc_info.value.details == {"operation": "mark_used"}


def test_engine_options_bound_statement_time() -> None:
    postgres = engine_options(
        Settings(DATABASE_URL="postgresql+psycopg://db/marketplace", DB_STATEMENT_TIMEOUT_SECONDS=2.5)
    )
    sqlite = engine_options(Settings(DATABASE_URL="sqlite:///sessions.db", DB_STATEMENT_TIMEOUT_SECONDS=2.5))

    assert postgres["connect_args"] == {"options": "-c statement_timeout=2500"}
    assert postgres["pool_timeout"] == Settings().DB_POOL_TIMEOUT_SECONDS
    assert sqlite["connect_args"] == {"check_same_thread": False, "timeout": 2.5}


def test_lock_wait_timeout_becomes_persistence_error(tmp_path, clock) -> None:
    path = tmp_path / "locked.db"
    engine = create_engine(
        f"sqlite:///{path}",
        **engine_options(Settings(DATABASE_URL=f"sqlite:///{path}", DB_STATEMENT_TIMEOUT_SECONDS=0.1)),
    )
    Base.metadata.create_all(engine)
    with Session(engine) as setup:
        owner = User(username="blocked", email="blocked@example.com", password_hash="x")
        setup.add(owner)
        setup.commit()
        owner_id = owner.id

    blocker = sqlite3.connect(path, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with Session(engine) as db:
            with pytest.raises(PersistenceError) as exc_info:
                SessionStore(db, clock=clock).store(owner_id, "token-a", _expires(clock))
        assert exc_info.value.details == {"operation": "store"}
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()
        engine.dispose()


def test_concurrent_rotation_has_single_winner(tmp_path, clock) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sessions.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    with Session(engine) as setup:
        owner = User(username="racer", email="racer@example.com", password_hash="x")
        setup.add(owner)
        setup.commit()
        owner_id = owner.id
        SessionStore(setup, clock=clock).store(owner_id, "shared", _expires(clock))

    barrier = threading.Barrier(2)
    outcomes: list[object] = []
    lock = threading.Lock()

    def racer(new_token: str) -> None:
        with Session(engine) as db:
            racer_store = SessionStore(db, clock=clock)
            barrier.wait()
            try:
                racer_store.rotate("shared", owner_id, new_token, _expires(clock))
                outcome: object = new_token
            except RefreshTokenNotFoundError as exc:
                outcome = exc
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=racer, args=(f"next-{i}",)) for i in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    winners = [item for item in outcomes if isinstance(item, str)]
    losers = [item for item in outcomes if isinstance(item, RefreshTokenNotFoundError)]
    assert len(winners) == 1
    assert len(losers) == 1

    with Session(engine) as check:
        check_store = SessionStore(check, clock=clock)
        assert check_store.find_valid("shared") is None
        assert check_store.count_active(owner_id) == 1
    engine.dispose()
