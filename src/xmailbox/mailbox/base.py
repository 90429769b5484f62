from __future__ import annotations

import hashlib
import secrets
import struct
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set, Tuple

from xmailbox.core.enums import MailboxMode, Side
from xmailbox.core.errors import DuplicateKey, WrongDestination, WrongSource
from xmailbox.core.keying import metadata_digest
from xmailbox.core.models import (
    MailboxSnapshot,
    Message,
    MessageSent,
    Metadata,
    MetadataDigest,
)
from xmailbox.core.state import NullifierGuard


class Mailbox(ABC):
    """
    Capability interface of a per-chain mailbox.

    Each chain hosts exactly one mailbox, which exclusively owns its inbox,
    outbox, digests and nullifiers. All mutation goes through:

        send(metadata, payload, caller)      application -> outbox
        populate_inbox(messages, aux)        coordinator -> inbox
        recv(metadata) -> payload            inbox -> application

    plus the read-only queries chain_id, rand_session_id, inbox_digest and
    outbox_digest consumed by applications and the settlement layer.

    Two independent implementations exist (SyncMailbox, AsyncMailbox); the
    choice is made at configuration time by mailbox.factory.make_mailbox.
    Operations run to completion one at a time and either commit fully or
    raise a MailboxError leaving the state untouched.
    """

    mode: MailboxMode

    # --------------------------------------------------------------
    # Identity and lifecycle
    # --------------------------------------------------------------

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Host chain id, fixed at construction."""
        raise NotImplementedError

    @property
    @abstractmethod
    def current_block(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def begin_block(self, height: int) -> None:
        """
        Signal a block boundary. Synchronous mailboxes reset their state;
        asynchronous mailboxes only record the height.
        """
        raise NotImplementedError

    # --------------------------------------------------------------
    # Public operations
    # --------------------------------------------------------------

    @abstractmethod
    def send(self, metadata: Metadata, payload: bytes, *, caller: bytes) -> None:
        """
        Emit a message from this chain.

        Preconditions:
            metadata.src_chain_id == chain_id      else WrongSource
            caller == metadata.src_address         else WrongSource
            outbox nullifier not yet marked        else DuplicateKey

        Effect: folds (key, payload) into outbox_digest[dest_chain_id]
        and appends a MessageSent event.
        """
        raise NotImplementedError

    @abstractmethod
    def populate_inbox(
        self,
        messages: Sequence[Message],
        aux: bytes = b"",
        *,
        block_height: Optional[int] = None,
    ) -> None:
        """
        Write a relayed batch into the inbox, all or nothing.

        Fails with AuthenticationFailed, WrongDestination or DuplicateKey;
        any failure rejects the whole batch.
        """
        raise NotImplementedError

    @abstractmethod
    def recv(self, metadata: Metadata) -> bytes:
        """Return the payload stored under digest(metadata), or raise NotFound."""
        raise NotImplementedError

    @abstractmethod
    def rand_session_id(self) -> int:
        """A fresh u128 session id, unique per call on this mailbox."""
        raise NotImplementedError

    @abstractmethod
    def inbox_digest(self, src_chain_id: int) -> str:
        raise NotImplementedError

    @abstractmethod
    def outbox_digest(self, dest_chain_id: int) -> str:
        raise NotImplementedError

    # --------------------------------------------------------------
    # Observation (coordinator / settlement)
    # --------------------------------------------------------------

    @abstractmethod
    def events(self, since: int = 0) -> List[MessageSent]:
        """MessageSent events with log_index >= since."""
        raise NotImplementedError

    @abstractmethod
    def snapshot(self) -> MailboxSnapshot:
        raise NotImplementedError


# ======================================================================
# Shared building blocks (composition, not inheritance)
# ======================================================================

def check_source(chain_id: int, metadata: Metadata, caller: bytes) -> None:
    if metadata.src_chain_id != chain_id:
        raise WrongSource(
            f"send: src_chain_id {metadata.src_chain_id} is not this chain ({chain_id})"
        )
    if bytes(caller) != metadata.src_address:
        raise WrongSource(
            f"send: caller 0x{bytes(caller).hex()} may not claim src_address "
            f"0x{metadata.src_address.hex()}"
        )


def check_destination(chain_id: int, metadata: Metadata) -> None:
    if metadata.dest_chain_id != chain_id:
        raise WrongDestination(
            f"dest_chain_id {metadata.dest_chain_id} is not this chain ({chain_id})"
        )


def stage_inbox_batch(
    chain_id: int,
    messages: Sequence[Message],
    guard: Optional[NullifierGuard],
) -> List[Tuple[MetadataDigest, Message]]:
    """
    Validate a populate batch without touching state.

    `guard` is None when the batch will be applied against a freshly reset
    epoch, in which case only collisions inside the batch matter.
    """
    staged: List[Tuple[MetadataDigest, Message]] = []
    in_batch: Set[MetadataDigest] = set()

    for m in messages:
        check_destination(chain_id, m.metadata)
        key = metadata_digest(m.metadata)
        if key in in_batch:
            raise DuplicateKey(f"populate: key {key} appears twice in the batch", key=key)
        if guard is not None:
            guard.check(key)
        in_batch.add(key)
        staged.append((key, m))

    return staged


def commit_inbox_batch(
    guard: NullifierGuard,
    staged: Sequence[Tuple[MetadataDigest, Message]],
) -> Dict[int, int]:
    """
    Apply an already validated batch in order through the inbox guard.
    Returns the number of entries written per source chain.
    """
    written: Dict[int, int] = {}
    for key, m in staged:
        src = m.metadata.src_chain_id
        guard.check_and_mark(key, m.payload)
        guard.store.accumulator(Side.INBOX, src).append(key, m.payload)
        written[src] = written.get(src, 0) + 1
    return written


class SessionIdSource:
    """
    Per-mailbox source of u128 session ids:

        sha256( u32 chain_id || u64 counter || entropy )[:16]

    The counter makes every call distinct; the entropy, drawn once per
    instance, keeps values unpredictable across mailboxes and restarts.
    """

    def __init__(self, chain_id: int, entropy: Optional[bytes] = None) -> None:
        self.chain_id = chain_id
        self._entropy = entropy if entropy is not None else secrets.token_bytes(32)
        self._counter = 0

    def next(self) -> int:
        self._counter += 1
        seed = struct.pack(">IQ", self.chain_id, self._counter) + self._entropy
        return int.from_bytes(hashlib.sha256(seed).digest()[:16], "big")
