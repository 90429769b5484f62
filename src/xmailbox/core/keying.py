from __future__ import annotations

import hashlib

from xmailbox.core.models import Metadata, MetadataDigest

# 32 zero bytes: the initial value of every accumulator.
ZERO_DIGEST = "00" * 32


def metadata_digest(metadata: Metadata) -> MetadataDigest:
    """
    Storage key of a message: sha256 over the packed six metadata fields.

    The payload never enters the key, so a reader can look up an inbox
    entry knowing only the routing metadata. Sending and receiving chains
    must compute this identically for a write under K to be readable
    under K.
    """
    return hashlib.sha256(metadata.encode()).hexdigest()


def payload_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def key_bytes(key: MetadataDigest) -> bytes:
    """Decode a MetadataDigest back into its 32 raw bytes."""
    raw = bytes.fromhex(key)
    if len(raw) != 32:
        raise ValueError(f"Metadata digest must be 32 bytes, got {len(raw)}")
    return raw
