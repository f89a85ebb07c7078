"""HMAC-SHA256 signature generation and verification for webhooks.

Signature Format:
    X-Signature: 3f2a9c...   (lowercase hex, 64 characters)

The signature is computed as:
    HMAC-SHA256(secret, canonical_bytes(envelope))

Canonical bytes are the envelope serialized as JSON with sorted keys, no
insignificant whitespace, and every non-ASCII character escaped as \\uXXXX.
The output is therefore pure ASCII, and any Python string (lone surrogates
included) has a canonical form. Outbound deliveries send exactly these
bytes as the request body, so a receiver can verify against the raw body,
and inbound verification re-canonicalizes the parsed payload so a sender's
key order does not matter.

Example:
    >>> from nexuscomm.webhooks.signature import sign, verify
    >>> envelope = {"event": "contact_created", "timestamp": "2025-01-01T00:00:00.000Z",
    ...             "data": {"id": "c_1"}, "userId": "u_1"}
    >>> signature = sign("whsec_test_secret_key", envelope)
    >>> verify("whsec_test_secret_key", envelope, signature)
    True
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

__all__ = [
    "SIGNATURE_FIELD",
    "SIGNATURE_HEADER",
    "SignatureError",
    "canonical_bytes",
    "sign",
    "sign_bytes",
    "verify",
    "verify_bytes",
]

# Header name for webhook signatures
SIGNATURE_HEADER = "X-Signature"

# Body field accepted as an alternative to the header on inbound callbacks
SIGNATURE_FIELD = "signature"


class SignatureError(Exception):
    """Error during signature generation."""

    pass


def canonical_bytes(envelope: Mapping[str, Any] | BaseModel) -> bytes:
    """Serialize an envelope deterministically.

    Args:
        envelope: Mapping, or a pydantic model dumped with its wire aliases

    Returns:
        Sorted-key, compact, ASCII-only JSON bytes
    """
    if isinstance(envelope, BaseModel):
        envelope = envelope.model_dump(mode="json", by_alias=True)
    return json.dumps(
        envelope,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    ).encode("ascii")


def sign_bytes(secret: str, body: bytes) -> str:
    """Compute the hex HMAC-SHA256 of raw bytes.

    Raises:
        SignatureError: If the secret is empty or missing
    """
    if not secret:
        raise SignatureError("Cannot sign payload without a secret")

    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign(secret: str, envelope: Mapping[str, Any] | BaseModel) -> str:
    """Generate the HMAC-SHA256 signature of an envelope.

    Pure function: the same inputs always produce the same output.

    Args:
        secret: Endpoint secret
        envelope: Envelope to sign

    Returns:
        Lowercase hex signature

    Raises:
        SignatureError: If the secret is empty or missing
    """
    return sign_bytes(secret, canonical_bytes(envelope))


def verify_bytes(secret: str | None, body: bytes, candidate: str | None) -> bool:
    """Verify a hex signature over raw bytes.

    Fails closed: a missing secret or candidate is never valid.
    """
    if not secret or not candidate:
        return False

    expected = sign_bytes(secret, body)

    # Timing-safe comparison; bytes so non-ASCII candidates cannot raise
    return hmac.compare_digest(
        expected.encode("ascii"),
        candidate.strip().lower().encode("utf-8"),
    )


def verify(
    secret: str | None,
    envelope: Mapping[str, Any] | BaseModel,
    candidate: str | None,
) -> bool:
    """Verify a signature against an envelope.

    Args:
        secret: Endpoint secret (a missing secret rejects)
        envelope: Envelope the signature claims to cover
        candidate: Hex signature supplied by the caller

    Returns:
        True if the signature is valid, False otherwise

    Security Notes:
        - Uses hmac.compare_digest, so comparison time does not depend on
          where the first mismatching character is
        - Never raises for malformed candidates; they simply do not match
    """
    return verify_bytes(secret, canonical_bytes(envelope), candidate)
