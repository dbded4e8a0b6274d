"""
Health endpoint for the passgate backend.

Reports database reachability and the audit trail retry backlog.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...services.access_control import AccessControl, get_access_control


router = APIRouter(prefix="/api/v1/health", tags=["health"])
logger = logging.getLogger("health")


@router.get("")
def health(
    response: Response,
    db: Session = Depends(get_db),
    control: AccessControl = Depends(get_access_control),
) -> dict:
    database_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check database probe failed: %s", exc)
        database_ok = False
    if not database_ok:
        response.status_code = 503
    return {
        "status": "ok" if database_ok else "degraded",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "database": database_ok,
        "audit_pending": control.recorder.pending_count,
    }
