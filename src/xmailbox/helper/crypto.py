# src/xmailbox/helper/crypto.py
from __future__ import annotations

import hashlib
import hmac
import json
import struct
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

from xmailbox.core.keying import key_bytes, metadata_digest
from xmailbox.core.models import Message


def batch_commitment(dest_chain_id: int, messages: Sequence[Message]) -> bytes:
    """
    Deterministic commitment to a populate batch:

        sha256( u32 dest_chain_id || key_1 || sha256(p_1) || ... )

    Both the relayer (when signing) and the destination mailbox (when
    verifying) must derive exactly the same bytes, otherwise the witness
    check fails.
    """
    h = hashlib.sha256()
    h.update(struct.pack(">I", dest_chain_id))
    for m in messages:
        h.update(key_bytes(metadata_digest(m.metadata)))
        h.update(hashlib.sha256(m.payload).digest())
    return h.digest()


def encode_witness(relayer_id: str, signature: str) -> bytes:
    """Canonical JSON encoding of a relayer witness, used as populate `aux`."""
    data = {"relayer_id": relayer_id, "signature": signature}
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_witness(aux: bytes) -> Optional[Dict[str, str]]:
    """
    Parse an aux witness. Returns None if it is not a well-formed
    relayer witness.
    """
    try:
        data = json.loads(aux.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    relayer_id = data.get("relayer_id")
    signature = data.get("signature")
    if not isinstance(relayer_id, str) or not isinstance(signature, str):
        return None
    return {"relayer_id": relayer_id, "signature": signature}


def sign_populate_batch(
    relayer_id: str,
    secret_key: bytes,
    dest_chain_id: int,
    messages: Sequence[Message],
) -> bytes:
    """
    Relayer side: produce the aux witness for a populate batch.

    The signature is HMAC_SHA256(secret_key, batch_commitment(...)) in hex.
    """
    mac = hmac.new(secret_key, batch_commitment(dest_chain_id, messages), hashlib.sha256).hexdigest()
    return encode_witness(relayer_id, mac)


class RelayerVerifier(ABC):
    """
    Verifies a relayer's signature over a populate batch commitment.

    Real deployments would check an ECDSA/BLS signature or a protocol
    proof here; the mailbox only needs an accept / reject answer.
    """

    relayer_id: str

    @abstractmethod
    def verify(self, commitment: bytes, signature: str) -> bool:
        raise NotImplementedError


class HmacRelayerVerifier(RelayerVerifier):
    """
    HMAC-SHA256 relayer verifier with a symmetric secret shared between
    the relayer and the destination chain.
    """

    def __init__(self, relayer_id: str, secret_key: bytes) -> None:
        self.relayer_id = relayer_id
        self.secret_key = secret_key

    def verify(self, commitment: bytes, signature: str) -> bool:
        mac = hmac.new(self.secret_key, commitment, hashlib.sha256).hexdigest()
        return hmac.compare_digest(mac, signature)


class RelayerRegistry:
    """
    Registry of relayer verifiers, keyed by relayer_id.

    Typical usage pattern:

        registry = RelayerRegistry()
        registry.register(HmacRelayerVerifier("relayer-1", secret_key=b"..."))
        ...
        verifier = registry.get(witness["relayer_id"])
        if verifier is None:
            # unknown relayer -> reject the batch
    """

    def __init__(self) -> None:
        self._verifiers: Dict[str, RelayerVerifier] = {}

    def register(self, verifier: RelayerVerifier) -> None:
        relayer_id = getattr(verifier, "relayer_id", None)
        if relayer_id is None:
            raise ValueError("Verifier must have a 'relayer_id' attribute.")
        self._verifiers[relayer_id] = verifier

    def get(self, relayer_id: str) -> Optional[RelayerVerifier]:
        return self._verifiers.get(relayer_id)

    def __len__(self) -> int:
        return len(self._verifiers)


class PopulateAuthPolicy(ABC):
    """
    Authorization policy for the `aux` witness of populate_inbox.

    The mailbox calls authenticate() before touching any state; a False
    answer rejects the whole batch with AuthenticationFailed.
    """

    @abstractmethod
    def authenticate(self, dest_chain_id: int, messages: Sequence[Message], aux: bytes) -> bool:
        raise NotImplementedError


class OpenPopulatePolicy(PopulateAuthPolicy):
    """Permissionless populate: any witness, including an empty one, is accepted."""

    def authenticate(self, dest_chain_id: int, messages: Sequence[Message], aux: bytes) -> bool:
        return True


class RelayerSignaturePolicy(PopulateAuthPolicy):
    """
    Accept a batch only if `aux` carries a signature from a registered
    relayer over batch_commitment(dest_chain_id, messages).
    """

    def __init__(self, registry: RelayerRegistry) -> None:
        self.registry = registry

    def authenticate(self, dest_chain_id: int, messages: Sequence[Message], aux: bytes) -> bool:
        witness = decode_witness(aux)
        if witness is None:
            return False

        verifier = self.registry.get(witness["relayer_id"])
        if verifier is None:
            return False

        return verifier.verify(batch_commitment(dest_chain_id, messages), witness["signature"])
