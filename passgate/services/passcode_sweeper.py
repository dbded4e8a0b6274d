"""
Background sweeper: expires overdue passcodes and drains the audit retry queue.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from .access_control import AccessControl, get_access_control


def _interval_sec() -> int:
    try:
        interval = int(os.getenv("PASSCODE_SWEEPER_INTERVAL_SEC", "60"))
    except Exception:
        interval = 60
    return max(10, interval)


def sweep_once(control: AccessControl, logger: logging.Logger) -> tuple[int, int]:
    expired = control.passcodes.expire_overdue()
    flushed = control.recorder.retry_pending() if control.recorder.pending_count else 0
    if expired or flushed:
        logger.info("Sweep cycle expired=%s audit_flushed=%s", expired, flushed)
    return expired, flushed


def run_passcode_sweeper(stop_event: threading.Event, control: Optional[AccessControl] = None) -> None:
    logger = logging.getLogger("PasscodeSweeper")
    interval_sec = _interval_sec()
    logger.info("Passcode sweeper started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        try:
            sweep_once(control or get_access_control(), logger)
        except Exception as exc:
            logger.exception("Passcode sweeper cycle failed: %s", exc)
        stop_event.wait(interval_sec)
    logger.info("Passcode sweeper stopped")
