"""Decode the claims embedded in a bearer token.

The backend issues HS256 JWTs. The client never verifies the signature (the
server remains the authority); it only reads the payload segment to drive UI
gating and expiry.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from .errors import MalformedTokenError


@dataclass(frozen=True)
class Claims:
    subject_id: str
    role: str
    expires_at: int

    def is_expired(self, now_s: float) -> bool:
        return self.expires_at * 1000 <= int(now_s * 1000)


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _payload_segment(token: str) -> dict[str, Any]:
    raw = token.strip()
    if raw.startswith("Bearer "):
        raw = raw[len("Bearer ") :].strip()
    parts = raw.split(".")
    if len(parts) != 3 or not parts[1]:
        raise MalformedTokenError("token must have three dot-separated segments")
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError("token payload is not base64url JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedTokenError("token payload must be a JSON object")
    return payload


def decode_claims(token: str) -> Claims:
    """Return the ``Claims`` carried by ``token`` or raise ``MalformedTokenError``."""

    payload = _payload_segment(token)

    subject_id = payload.get("userId") or payload.get("sub")
    if not isinstance(subject_id, str) or not subject_id:
        raise MalformedTokenError("token has no subject id")

    role = payload.get("role")
    if not isinstance(role, str) or not role:
        role = "admin" if payload.get("isAdmin") is True else "user"

    exp = payload.get("exp")
    # bool is an int subclass; reject it explicitly.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise MalformedTokenError("token has no numeric exp claim")
    # Infinity, NaN and integers beyond float range cannot drive a timer.
    try:
        expires_at = int(float(exp))
    except (OverflowError, ValueError) as exc:
        raise MalformedTokenError("token exp claim is out of range") from exc

    return Claims(subject_id=subject_id, role=role, expires_at=expires_at)
