from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import pytest

from noteflow_backend.sync_token import (
    SYNC_EPOCH,
    decode_sync_token,
    encode_sync_token,
    is_epoch,
)


NOW = datetime(2026, 10, 19, 12, 0, 0, 123456, tzinfo=timezone.utc)


def test_token_preserves_microseconds():
    t = datetime(2026, 10, 19, 11, 59, 59, 999999, tzinfo=timezone.utc)
    token = encode_sync_token(t)
    assert token.startswith("st1.")
    assert decode_sync_token(token, now=NOW) == t


def test_token_accepts_naive_utc_datetimes():
    naive = datetime(2026, 1, 2, 3, 4, 5, 6)
    assert decode_sync_token(encode_sync_token(naive), now=NOW) == naive.replace(
        tzinfo=timezone.utc
    )


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "   ",
        "garbage",
        "st1.",
        "st1.!!!!",
        "st2." + base64.urlsafe_b64encode(b"1000").decode("ascii"),
        "st1." + base64.urlsafe_b64encode(b"-5").decode("ascii"),
        "st1." + base64.urlsafe_b64encode(b"12ab").decode("ascii"),
        "sync_notanumber_abc",
    ],
)
def test_malformed_tokens_mean_full_resync(token: str | None):
    decoded = decode_sync_token(token, now=NOW)
    assert decoded == SYNC_EPOCH
    assert is_epoch(decoded)


def test_huge_token_value_falls_back_to_epoch():
    body = base64.urlsafe_b64encode(b"9" * 40).decode("ascii").rstrip("=")
    assert decode_sync_token(f"st1.{body}", now=NOW) == SYNC_EPOCH


def test_future_token_is_clamped_to_now():
    future = NOW + timedelta(days=3)
    assert decode_sync_token(encode_sync_token(future), now=NOW) == NOW


def test_legacy_millisecond_tokens_are_accepted():
    ms = int((NOW - timedelta(minutes=5) - SYNC_EPOCH).total_seconds() * 1000)
    decoded = decode_sync_token(f"sync_{ms}_k3j2h1", now=NOW)
    assert decoded == SYNC_EPOCH + timedelta(milliseconds=ms)


def test_tokens_order_like_their_times():
    earlier = encode_sync_token(NOW - timedelta(seconds=1))
    later = encode_sync_token(NOW)
    assert decode_sync_token(earlier, now=NOW) < decode_sync_token(later, now=NOW)


def test_epoch_detection_handles_naive_values():
    assert is_epoch(datetime(1970, 1, 1))
    assert not is_epoch(NOW)
