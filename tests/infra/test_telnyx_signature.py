"""verify_signature(): ed25519 over "{timestamp}|{body}" with a replay window."""

import base64

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from covertext.domain.errors import WebhookSignatureError
from covertext.infra.telnyx_signature import load_public_key, verify_signature

NOW = 1_772_463_600
BODY = b'{"data": {"event_type": "message.received"}}'


@pytest.fixture
def private_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def public_key(private_key):
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b64encode(raw).decode()


def _sign(private_key, body: bytes = BODY, timestamp: int = NOW) -> str:
    return base64.b64encode(private_key.sign(f"{timestamp}|".encode() + body)).decode()


def test_valid_signature_passes(private_key, public_key):
    verify_signature(BODY, _sign(private_key), str(NOW), public_key, now=NOW + 10)


def test_signature_from_another_key_fails(public_key):
    with pytest.raises(WebhookSignatureError, match="does not match"):
        verify_signature(BODY, _sign(Ed25519PrivateKey.generate()), str(NOW), public_key, now=NOW)


def test_timestamp_is_part_of_the_signed_message(private_key, public_key):
    signature = _sign(private_key, timestamp=NOW)
    with pytest.raises(WebhookSignatureError, match="does not match"):
        verify_signature(BODY, signature, str(NOW + 1), public_key, now=NOW)


@pytest.mark.parametrize("offset", [-301, 301])
def test_timestamp_outside_tolerance_fails(private_key, public_key, offset):
    signature = _sign(private_key)
    with pytest.raises(WebhookSignatureError, match="tolerance"):
        verify_signature(BODY, signature, str(NOW), public_key, tolerance_seconds=300, now=NOW + offset)


@pytest.mark.parametrize("signature,timestamp", [
    (None, str(NOW)),
    ("c2ln", None),
    ("", ""),
])
def test_missing_headers_fail(public_key, signature, timestamp):
    with pytest.raises(WebhookSignatureError, match="Missing"):
        verify_signature(BODY, signature, timestamp, public_key, now=NOW)


def test_non_numeric_timestamp_fails(private_key, public_key):
    with pytest.raises(WebhookSignatureError, match="Invalid Telnyx timestamp"):
        verify_signature(BODY, _sign(private_key), "yesterday", public_key, now=NOW)


def test_garbage_signature_fails(public_key):
    with pytest.raises(WebhookSignatureError):
        verify_signature(BODY, "not base64!!", str(NOW), public_key, now=NOW)


def test_bad_public_key_is_rejected():
    with pytest.raises(WebhookSignatureError, match="public key"):
        load_public_key(base64.b64encode(b"too short").decode())
