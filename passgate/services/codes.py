"""
Passcode code generation: static codes, signed QR payloads and rolling codes.

QR payload format (all parts base64url, unpadded)::

    PQ1.<json body>.<hmac-sha256 tag>

The body binds the code to its owner and expiry (``{"c", "u", "e"}``) and
the tag covers the version prefix plus the encoded body, so neither the
code nor the expiry can be swapped without the signing secret.

Rolling codes follow the HOTP dynamic-truncation scheme over
``"<base_code>:<window index>"`` where the window index is
``floor(unix_time / step)``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

QR_VERSION = "PQ1"
STATIC_CODE_BYTES = 24  # 192 bits
DEFAULT_STEP_SECONDS = 30
DEFAULT_DRIFT_STEPS = 1
DEFAULT_DIGITS = 6

_TYPE_PREFIX = {"employee": "emp", "visitor": "vis"}

TimeLike = Union[datetime, int, float]


class InvalidPayloadError(ValueError):
    """A presented QR payload is malformed or its tag does not verify."""


@dataclass(frozen=True)
class QRPayload:
    code: str
    user_id: int
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _timestamp(at: TimeLike) -> float:
    if isinstance(at, datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return at.timestamp()
    return float(at)


class CodeGenerator:
    def __init__(
        self,
        secret: str,
        *,
        step_seconds: int = DEFAULT_STEP_SECONDS,
        drift_steps: int = DEFAULT_DRIFT_STEPS,
        digits: int = DEFAULT_DIGITS,
    ) -> None:
        if not secret:
            raise ValueError("signing secret cannot be empty")
        if step_seconds < 1:
            raise ValueError("step_seconds must be positive")
        self._key = secret.encode("utf-8")
        self.step_seconds = step_seconds
        self.drift_steps = max(0, drift_steps)
        self.digits = digits

    # -- static codes -------------------------------------------------

    def new_static_code(self, owner_id: int, passcode_type: str) -> str:
        """Return a fresh opaque code; uniqueness is enforced by the store on insert."""
        prefix = _TYPE_PREFIX.get(passcode_type, "pc")
        return f"{prefix}_{secrets.token_urlsafe(STATIC_CODE_BYTES)}"

    # -- QR payloads --------------------------------------------------

    def _sign(self, signing_input: str) -> bytes:
        return hmac.new(self._key, signing_input.encode("ascii"), hashlib.sha256).digest()

    def encode_qr(self, passcode: Any) -> str:
        """Sign ``passcode.code`` bound to its owner and ``valid_until``."""
        body = {
            "c": passcode.code,
            "u": int(passcode.user_id),
            "e": int(_timestamp(passcode.valid_until)),
        }
        encoded = _b64url_encode(json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        signing_input = f"{QR_VERSION}.{encoded}"
        return f"{signing_input}.{_b64url_encode(self._sign(signing_input))}"

    def decode_qr(self, payload: str) -> QRPayload:
        """Verify the tag, then extract the code. Fails closed on any mismatch."""
        if not payload or not isinstance(payload, str):
            raise InvalidPayloadError("empty payload")
        parts = payload.strip().split(".")
        if len(parts) != 3 or parts[0] != QR_VERSION:
            raise InvalidPayloadError("unrecognised payload format")
        version, encoded, tag = parts
        try:
            presented = _b64url_decode(tag)
        except (ValueError, TypeError) as exc:
            raise InvalidPayloadError("undecodable tag") from exc
        if not hmac.compare_digest(presented, self._sign(f"{version}.{encoded}")):
            raise InvalidPayloadError("signature mismatch")
        try:
            body = json.loads(_b64url_decode(encoded))
            code = body["c"]
            user_id = int(body["u"])
            expires_at = datetime.fromtimestamp(int(body["e"]), tz=timezone.utc)
        except (ValueError, TypeError, KeyError) as exc:
            raise InvalidPayloadError("malformed body") from exc
        if not isinstance(code, str) or not code:
            raise InvalidPayloadError("malformed body")
        return QRPayload(code=code, user_id=user_id, expires_at=expires_at)

    # -- rolling codes ------------------------------------------------

    def window_index(self, at: TimeLike, step: int | None = None) -> int:
        return int(_timestamp(at) // (step or self.step_seconds))

    def _code_for_window(self, base_code: str, index: int) -> str:
        message = f"{base_code}:{index}".encode("utf-8")
        digest = hmac.new(self._key, message, hashlib.sha256).digest()
        offset = digest[-1] & 0x0F
        value = int.from_bytes(digest[offset:offset + 4], "big") & 0x7FFFFFFF
        return str(value % (10 ** self.digits)).zfill(self.digits)

    def rolling_code(self, base_code: str, at: TimeLike, step: int | None = None) -> str:
        return self._code_for_window(base_code, self.window_index(at, step))

    def rolling_valid_until(self, at: TimeLike, step: int | None = None) -> datetime:
        """End of the window ``at`` falls in (drift tolerance not included)."""
        width = step or self.step_seconds
        end = (self.window_index(at, width) + 1) * width
        return datetime.fromtimestamp(end, tz=timezone.utc)

    def validate_rolling(self, candidate: str, base_code: str, at: TimeLike, step: int | None = None) -> bool:
        """Accept ``candidate`` for the current window or one within the drift tolerance."""
        if not candidate or not base_code:
            return False
        candidate = candidate.strip()
        if len(candidate) != self.digits or not (candidate.isascii() and candidate.isdigit()):
            return False
        current = self.window_index(at, step)
        matched = False
        for index in range(current - self.drift_steps, current + self.drift_steps + 1):
            # No early exit: every window in range is compared.
            matched |= hmac.compare_digest(candidate, self._code_for_window(base_code, index))
        return matched
