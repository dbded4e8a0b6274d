"""
Error taxonomy shared by the passgate services.

Two classes of failure never mix: infrastructure errors (store unreachable,
timeouts) propagate to the caller as retryable exceptions, while passcode
validation outcomes are always returned as data. Issuance and lookup
operations raise the `PasscodeError` family for caller mistakes.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional


class InfrastructureError(RuntimeError):
    """A backing store could not be reached or timed out."""

    retryable = True


class StoreUnavailableError(InfrastructureError):
    pass


class CodeConflictError(Exception):
    """A freshly generated passcode code already exists in the store."""


class PasscodeError(Exception):
    """Base class for issuance and lookup errors surfaced to API callers."""

    status_code = 400


class UserNotFoundError(PasscodeError):
    status_code = 404


class AccountDisabledError(PasscodeError):
    status_code = 409


class PasscodeNotFoundError(PasscodeError):
    status_code = 404


class ApplicationNotFoundError(PasscodeError):
    status_code = 404


class ApplicationNotApprovedError(PasscodeError):
    status_code = 409


def log_exception(
    logger: logging.Logger,
    message: str,
    *,
    extra: Optional[Mapping[str, Any]] = None,
    exc: Optional[BaseException] = None,
) -> None:
    """Log `message` with structured context and the active (or given) traceback."""
    details = " ".join(f"{key}={value}" for key, value in (extra or {}).items())
    exc_info: Any = exc if exc is not None else True
    if details:
        logger.error("%s %s", message, details, exc_info=exc_info)
    else:
        logger.error("%s", message, exc_info=exc_info)
