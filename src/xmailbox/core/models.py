from __future__ import annotations

import hashlib
import json
import struct
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from xmailbox.core.enums import MailboxMode

U32_MAX = 2**32 - 1
U128_MAX = 2**128 - 1
ADDRESS_LEN = 32

# Lowercase 64-char hex of a 32-byte sha256 digest (no "0x" prefix).
MetadataDigest = str


def _coerce_address(value: Any) -> bytes:
    """
    Accept raw bytes, a hex string (optional 0x prefix) or an integer and
    return the 32-byte big-endian identifier.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        s = value.strip()
        if s.startswith(("0x", "0X")):
            s = s[2:]
        try:
            raw = bytes.fromhex(s)
        except ValueError as exc:
            raise ValueError(f"Not a valid hex address: {value!r}") from exc
    elif isinstance(value, int) and not isinstance(value, bool):
        if value < 0 or value >= 1 << (8 * ADDRESS_LEN):
            raise ValueError(f"Address integer out of range: {value}")
        raw = value.to_bytes(ADDRESS_LEN, "big")
    else:
        raise ValueError(f"Unsupported address type {type(value).__name__}")

    if len(raw) != ADDRESS_LEN:
        raise ValueError(f"Address must be exactly {ADDRESS_LEN} bytes, got {len(raw)}")
    return raw


# ======================================================================
# 1. Metadata: routing fields, the sole input of the storage key
# ======================================================================

class Metadata(BaseModel):
    """
    Routing metadata of a cross-chain message.

    The six fields are the compatibility surface shared by every mailbox:

        src_chain_id, dest_chain_id : u32
        src_address, dest_address   : 32-byte chain-agnostic identifiers
        session_id, nonce           : u128

    The tuple is *intended* to be unique per message, but session_id and
    nonce are caller-supplied; uniqueness is enforced by the nullifier
    guards at write time, not here.
    """

    src_chain_id: int = Field(..., ge=0, le=U32_MAX, description="Chain that emits the message.")
    dest_chain_id: int = Field(..., ge=0, le=U32_MAX, description="Chain that receives the message.")
    src_address: bytes = Field(..., description="Sender identity on the source chain.")
    dest_address: bytes = Field(..., description="Recipient identity on the destination chain.")
    session_id: int = Field(..., ge=0, le=U128_MAX, description="Caller-chosen session identifier.")
    nonce: int = Field(default=0, ge=0, le=U128_MAX, description="Per-session counter.")

    class Config:
        frozen = True
        extra = "forbid"

    @field_validator("src_address", "dest_address", mode="before")
    @classmethod
    def _check_address(cls, v: Any) -> bytes:
        return _coerce_address(v)

    @field_serializer("src_address", "dest_address")
    def _dump_address(self, v: bytes) -> str:
        return "0x" + v.hex()

    def encode(self) -> bytes:
        """
        Canonical packed encoding, big-endian, in declaration order:

            u32 | u32 | bytes32 | bytes32 | u128 | u128   (104 bytes)
        """
        return (
            struct.pack(">II", self.src_chain_id, self.dest_chain_id)
            + self.src_address
            + self.dest_address
            + self.session_id.to_bytes(16, "big")
            + self.nonce.to_bytes(16, "big")
        )


# ======================================================================
# 2. Message: (metadata, opaque payload)
# ======================================================================

class Message(BaseModel):
    """
    A cross-chain message m = (metadata, payload).

    The payload is application-defined and opaque to the mailbox. A string
    given as "0x"-prefixed valid hex is decoded as hex; any other string is
    taken as UTF-8 text.
    """

    metadata: Metadata
    payload: bytes = Field(default=b"", description="Opaque application payload.")

    class Config:
        frozen = True

    @field_validator("payload", mode="before")
    @classmethod
    def _check_payload(cls, v: Any) -> Any:
        if isinstance(v, str):
            if v.startswith(("0x", "0X")):
                try:
                    return bytes.fromhex(v[2:])
                except ValueError:
                    pass
            return v.encode("utf-8")
        return v

    @field_serializer("payload")
    def _dump_payload(self, v: bytes) -> str:
        return "0x" + v.hex()


# ======================================================================
# 3. MessageSent: the chain log emitted by send()
# ======================================================================

class MessageSent(BaseModel):
    """
    Event appended to the source mailbox's log on every successful send.

    The coordinator observes these events to build populate batches for the
    destination chains; the mailbox itself never reads them back.
    """

    chain_id: int
    block_height: int
    log_index: int
    key: MetadataDigest
    message: Message


# ======================================================================
# 4. Accumulator views used by the settlement layer
# ======================================================================

class AccumulatorEntry(BaseModel):
    """One (key, payload) element as folded into an accumulator."""

    key: MetadataDigest
    payload_hash: str = Field(..., description="sha256(payload) as hex.")

    class Config:
        frozen = True


class InclusionProof(BaseModel):
    """
    Membership proof of one leaf in a Merkle accumulator of `count` leaves.

    siblings are ordered bottom-up; the position bit of `index` at each
    level decides whether the running hash is the left or right child.
    """

    index: int = Field(..., ge=0)
    count: int = Field(..., ge=1)
    leaf: str
    siblings: List[str] = Field(default_factory=list)


# ======================================================================
# 5. MailboxSnapshot: digests as attested by chain state
# ======================================================================

class MailboxSnapshot(BaseModel):
    """
    Digest view of one mailbox at one block, as consumed by settlement.

    `state_root` commits to every other field. In a deployment it would be
    proven against the chain's storage root; here the settlement layer
    simply recomputes it to detect a snapshot that was altered after the
    fact.
    """

    chain_id: int
    mode: MailboxMode
    block_height: int
    inbox_digests: Dict[int, str] = Field(default_factory=dict)
    outbox_digests: Dict[int, str] = Field(default_factory=dict)
    state_root: Optional[str] = None

    def compute_root(self) -> str:
        data = self.model_dump(mode="json", exclude={"state_root"})
        js = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(js.encode("utf-8")).hexdigest()

    def verify_root(self) -> bool:
        return self.state_root is not None and self.state_root == self.compute_root()

    @classmethod
    def build(
        cls,
        *,
        chain_id: int,
        mode: MailboxMode,
        block_height: int,
        inbox_digests: Dict[int, str],
        outbox_digests: Dict[int, str],
    ) -> "MailboxSnapshot":
        snap = cls(
            chain_id=chain_id,
            mode=mode,
            block_height=block_height,
            inbox_digests=dict(inbox_digests),
            outbox_digests=dict(outbox_digests),
        )
        snap.state_root = snap.compute_root()
        return snap
