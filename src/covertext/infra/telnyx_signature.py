"""Telnyx webhook signature verification.

Telnyx signs every webhook with ed25519 over ``"{timestamp}|{raw body}"`` and
sends the base64 signature and the unix timestamp in two headers. The public
key is shown in the Telnyx portal (base64, 32 raw bytes).
"""

import base64
import time

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from covertext.domain.errors import WebhookSignatureError

SIGNATURE_HEADER = "telnyx-signature-ed25519"
TIMESTAMP_HEADER = "telnyx-timestamp"


def load_public_key(encoded: str) -> Ed25519PublicKey:
    try:
        return Ed25519PublicKey.from_public_bytes(base64.b64decode(encoded, validate=True))
    except ValueError as e:
        raise WebhookSignatureError("Telnyx public key is not a base64 ed25519 key") from e


def verify_signature(
    payload: bytes,
    signature: str | None,
    timestamp: str | None,
    public_key: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Raise WebhookSignatureError unless ``signature`` is Telnyx's for this payload.

    ``timestamp`` must lie within ``tolerance_seconds`` of ``now`` in either
    direction, which bounds how long a captured request can be replayed.
    """
    if not signature or not timestamp:
        raise WebhookSignatureError("Missing Telnyx signature headers")

    try:
        sent_at = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError(f"Invalid Telnyx timestamp: {timestamp!r}") from e

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        raise WebhookSignatureError("Telnyx timestamp outside tolerance")

    try:
        raw_signature = base64.b64decode(signature, validate=True)
    except ValueError as e:
        raise WebhookSignatureError("Telnyx signature is not base64") from e

    key = load_public_key(public_key)
    try:
        key.verify(raw_signature, timestamp.encode() + b"|" + payload)
    except InvalidSignature as e:
        raise WebhookSignatureError("Telnyx signature does not match") from e
