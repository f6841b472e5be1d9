"""Database engine and session lifecycle helpers."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marketplace.core.config import Settings, settings


def engine_options(config: Settings) -> dict[str, object]:
    """Engine keyword arguments bounding how long any database call may block."""
    options: dict[str, object] = {"pool_pre_ping": True}
    if config.DATABASE_URL.startswith("sqlite"):
        # SQLite has no statement timeout; the busy timeout bounds lock waits.
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": config.DB_STATEMENT_TIMEOUT_SECONDS,
        }
    else:
        timeout_ms = max(1, int(config.DB_STATEMENT_TIMEOUT_SECONDS * 1000))
        options["pool_timeout"] = config.DB_POOL_TIMEOUT_SECONDS
        options["connect_args"] = {"options": f"-c statement_timeout={timeout_ms}"}
    return options


engine = create_engine(settings.DATABASE_URL, **engine_options(settings))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
