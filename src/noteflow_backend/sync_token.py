"""Sync token codec.

A sync token is an opaque cursor meaning "caught up with server state as of T".
It is not a credential: it carries no signature, and every record returned for
it is still filtered by the caller's group memberships.

Token format (dot-separated):
  st1.<base64url(microseconds since the unix epoch)>
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timedelta, timezone

from noteflow_backend.models import utc_now
from noteflow_backend.sync_utils import as_utc

SYNC_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TOKEN_VERSION = "st1"
_LEGACY_PREFIX = "sync_"


def _to_micros(value: datetime) -> int:
    delta = as_utc(value) - SYNC_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def _from_micros(micros: int) -> datetime:
    return SYNC_EPOCH + timedelta(microseconds=micros)


def encode_sync_token(server_time: datetime) -> str:
    raw = str(max(0, _to_micros(server_time))).encode("ascii")
    return f"{_TOKEN_VERSION}.{base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')}"


def _decode_micros(token: str) -> int | None:
    if token.startswith(_LEGACY_PREFIX):
        # sync_<epoch_ms>_<nonce>
        parts = token.split("_")
        if len(parts) >= 2 and parts[1].isdigit():
            return int(parts[1]) * 1000
        return None

    version, sep, body = token.partition(".")
    if not sep or version != _TOKEN_VERSION or not body:
        return None
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)).decode("ascii")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not raw.isdigit():
        return None
    return int(raw)


def decode_sync_token(token: str | None, *, now: datetime | None = None) -> datetime:
    """Return the cutoff encoded in ``token``.

    Empty or malformed tokens yield SYNC_EPOCH (full resync). A token pointing
    past ``now`` is clamped to ``now``.
    """

    value = (token or "").strip()
    if not value:
        return SYNC_EPOCH

    micros = _decode_micros(value)
    if micros is None:
        return SYNC_EPOCH

    try:
        decoded = _from_micros(micros)
    except OverflowError:
        return SYNC_EPOCH

    current = as_utc(now) if now is not None else utc_now()
    if decoded > current:
        return current
    return decoded


def is_epoch(value: datetime) -> bool:
    # SQLite hands back naive datetimes; everything we store is UTC.
    return as_utc(value) == SYNC_EPOCH
