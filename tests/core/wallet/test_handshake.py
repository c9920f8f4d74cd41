from datetime import datetime, timedelta, timezone

import pytest

from polygon_agent.core.recovery import DecryptionFailure, ExpiredRequest
from polygon_agent.core.wallet.handshake import EphemeralHandshake, b64url_decode, b64url_encode

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_b64url_is_unpadded_and_reversible() -> None:
    encoded = b64url_encode(b"\xff\xfe\x00")
    assert "=" not in encoded
    assert b64url_decode(encoded) == b"\xff\xfe\x00"


def test_open_sealed_payload(seal) -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    ciphertext = seal(handshake.public_key, b"hello")

    assert handshake.open(ciphertext, now=NOW) == b"hello"


def test_payload_for_other_key_fails(seal) -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    other = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)

    with pytest.raises(DecryptionFailure):
        handshake.open(seal(other.public_key, b"hello"), now=NOW)


def test_truncated_ciphertext_fails() -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    with pytest.raises(DecryptionFailure):
        handshake.open(b64url_encode(b"short"), now=NOW)


def test_expiry_is_checked_before_ciphertext() -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    with pytest.raises(ExpiredRequest):
        handshake.open("definitely not a sealed box", now=NOW + timedelta(hours=3))


def test_expired_at_exact_deadline(seal) -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    ciphertext = seal(handshake.public_key, b"hello")
    with pytest.raises(ExpiredRequest):
        handshake.open(ciphertext, now=handshake.expires_at)


def test_record_round_trip(seal) -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    restored = EphemeralHandshake.from_record(handshake.to_record())

    assert restored.public_key == handshake.public_key
    assert restored.expires_at == handshake.expires_at
    assert restored.open(seal(handshake.public_key, b"x"), now=NOW) == b"x"


def test_repr_hides_private_key() -> None:
    handshake = EphemeralHandshake.generate(timedelta(hours=2), now=NOW)
    assert handshake.to_record()["privateKey"] not in repr(handshake)
