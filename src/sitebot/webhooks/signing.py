"""Webhook signing and verification.

Wire format (must stay bit-exact for receivers):

  signed string  = "{unix_seconds}.{compact_json_body}"
  signature      = hex(HMAC-SHA256(secret, signed string))
  headers        = X-Webhook-Signature: sha256=<signature>
                   X-Webhook-Timestamp: <unix_seconds>
                   X-Webhook-Id: <payload id>

The body is serialised with no whitespace between tokens and non-ASCII text
left unescaped.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from collections.abc import Mapping
from typing import Any

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
ID_HEADER = "X-Webhook-Id"
SIGNATURE_PREFIX = "sha256="
DEFAULT_TOLERANCE_SECONDS = 300


def generate_secret() -> str:
    """Return a new signing secret: ``whsec_`` + 48 hex characters."""
    return "whsec_" + secrets.token_hex(24)


def serialize_payload(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def sign_payload(payload: str, secret: str) -> str:
    """Hex HMAC-SHA256 of *payload* under *secret*."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: str, signature: str, secret: str) -> bool:
    """Constant-time check of *signature* (bare hex) against *payload*.

    Signatures of the wrong length compare unequal; nothing is raised.
    """
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def signed_string(timestamp: int | str, body: str) -> str:
    return f"{timestamp}.{body}"


def signature_headers(
    body: str, secret: str, event_id: str, timestamp: int | None = None
) -> dict[str, str]:
    """Build the delivery headers for *body*."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    signature = sign_payload(signed_string(ts, body), secret)
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: f"{SIGNATURE_PREFIX}{signature}",
        TIMESTAMP_HEADER: ts,
        ID_HEADER: event_id,
    }


def verify_request(
    body: str | bytes,
    headers: Mapping[str, str],
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """Verify a received delivery: signature prefix, HMAC and timestamp age.

    *headers* lookups are case-insensitive. A zero or negative tolerance
    disables the age check.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    header_sig = lowered.get(SIGNATURE_HEADER.lower(), "")
    timestamp = lowered.get(TIMESTAMP_HEADER.lower(), "")
    if not header_sig.startswith(SIGNATURE_PREFIX) or not timestamp.isdigit():
        return False

    if tolerance_seconds > 0:
        current = time.time() if now is None else now
        if abs(current - int(timestamp)) > tolerance_seconds:
            return False

    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    return verify_signature(
        signed_string(timestamp, text), header_sig[len(SIGNATURE_PREFIX):], secret
    )
