"""Liveness endpoint."""

from __future__ import annotations

import datetime as dt

from fastapi import APIRouter

from marketplace.core.config import settings

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "environment": settings.ENV,
    }
