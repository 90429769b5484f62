from __future__ import annotations

import logging
from typing import List, Optional, Sequence, cast

from xmailbox.core.enums import AccumulatorFamily, MailboxMode, Side
from xmailbox.core.errors import AuthenticationFailed, InvalidBlockTransition, NotFound
from xmailbox.core.keying import metadata_digest
from xmailbox.core.models import (
    AccumulatorEntry,
    InclusionProof,
    MailboxSnapshot,
    Message,
    MessageSent,
    Metadata,
    MetadataDigest,
)
from xmailbox.core.state import InMemoryMailboxStore, MailboxStore, NullifierGuard
from xmailbox.helper.accumulator import MerkleAccumulator
from xmailbox.helper.crypto import OpenPopulatePolicy, PopulateAuthPolicy
from xmailbox.mailbox.base import (
    Mailbox,
    SessionIdSource,
    check_destination,
    check_source,
    commit_inbox_batch,
    stage_inbox_batch,
)

logger = logging.getLogger(__name__)


class AsyncMailbox(Mailbox):
    """
    Persistent mailbox for asynchronous messaging.

    There is no block-scoped reset: the store stays in a single epoch for
    the mailbox lifetime, so state only grows

        Empty --populate--> Populated --populate--> Populated ...

    and a message populated at block K can be received at any later block.

    Digests are Merkle accumulators. Settlement therefore only needs to
    show that the inbox entries from chain j are a subset of chain j's
    outbox towards this chain, one inclusion proof per entry, which this
    mailbox serves through outbox_proof().
    """

    mode = MailboxMode.ASYNC

    def __init__(
        self,
        chain_id: int,
        *,
        auth_policy: Optional[PopulateAuthPolicy] = None,
        start_block: int = 0,
        entropy: Optional[bytes] = None,
        store: Optional[MailboxStore] = None,
    ) -> None:
        self._chain_id = chain_id
        self.store = store if store is not None else InMemoryMailboxStore(AccumulatorFamily.MERKLE)
        self.auth_policy = auth_policy if auth_policy is not None else OpenPopulatePolicy()
        self._inbox_guard = NullifierGuard(self.store, Side.INBOX)
        self._outbox_guard = NullifierGuard(self.store, Side.OUTBOX)
        self._sessions = SessionIdSource(chain_id, entropy)
        self._block = start_block
        self._events: List[MessageSent] = []

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def current_block(self) -> int:
        return self._block

    def begin_block(self, height: int) -> None:
        if height < self._block:
            raise InvalidBlockTransition(
                f"chain {self._chain_id}: cannot go back from block {self._block} to {height}"
            )
        self._block = height

    # --------------------------------------------------------------
    # Public operations
    # --------------------------------------------------------------

    def send(self, metadata: Metadata, payload: bytes, *, caller: bytes) -> None:
        check_source(self._chain_id, metadata, caller)
        message = Message(metadata=metadata, payload=payload)
        key = metadata_digest(metadata)
        self._outbox_guard.check(key)

        self.store.accumulator(Side.OUTBOX, metadata.dest_chain_id).append(key, message.payload)
        self._outbox_guard.mark(key)
        self._events.append(
            MessageSent(
                chain_id=self._chain_id,
                block_height=self._block,
                log_index=len(self._events),
                key=key,
                message=message,
            )
        )
        logger.debug("chain %d: sent %s to chain %d", self._chain_id, key, metadata.dest_chain_id)

    def populate_inbox(
        self,
        messages: Sequence[Message],
        aux: bytes = b"",
        *,
        block_height: Optional[int] = None,
    ) -> None:
        if block_height is not None and block_height < self._block:
            raise InvalidBlockTransition(
                f"chain {self._chain_id}: populate for past block {block_height} (current {self._block})"
            )

        if not self.auth_policy.authenticate(self._chain_id, messages, aux):
            logger.warning("chain %d: populate witness rejected (%d messages)", self._chain_id, len(messages))
            raise AuthenticationFailed(f"chain {self._chain_id}: populate witness rejected")

        staged = stage_inbox_batch(self._chain_id, messages, self._inbox_guard)

        if block_height is not None:
            self.begin_block(block_height)
        written = commit_inbox_batch(self._inbox_guard, staged)
        logger.debug("chain %d: populated %s at block %d", self._chain_id, written, self._block)

    def recv(self, metadata: Metadata) -> bytes:
        check_destination(self._chain_id, metadata)
        key = metadata_digest(metadata)
        slot = self.store.get_slot(Side.INBOX, key)
        if slot is None or slot.payload is None:
            raise NotFound(f"chain {self._chain_id}: no inbox entry {key}", key=key)
        return slot.payload

    def rand_session_id(self) -> int:
        return self._sessions.next()

    def inbox_digest(self, src_chain_id: int) -> str:
        return self.store.digest(Side.INBOX, src_chain_id)

    def outbox_digest(self, dest_chain_id: int) -> str:
        return self.store.digest(Side.OUTBOX, dest_chain_id)

    def events(self, since: int = 0) -> List[MessageSent]:
        return self._events[since:]

    def snapshot(self) -> MailboxSnapshot:
        return MailboxSnapshot.build(
            chain_id=self._chain_id,
            mode=self.mode,
            block_height=self._block,
            inbox_digests=self.store.digests(Side.INBOX),
            outbox_digests=self.store.digests(Side.OUTBOX),
        )

    # --------------------------------------------------------------
    # Subset-witness support
    # --------------------------------------------------------------

    def _merkle(self, side: Side, chain_id: int) -> Optional[MerkleAccumulator]:
        return cast(Optional[MerkleAccumulator], self.store.peek_accumulator(side, chain_id))

    def inbox_entries(self, src_chain_id: int) -> List[AccumulatorEntry]:
        """The (key, payload_hash) sequence folded into inbox_digest(src_chain_id)."""
        acc = self._merkle(Side.INBOX, src_chain_id)
        return acc.entries() if acc is not None else []

    def outbox_entries(self, dest_chain_id: int) -> List[AccumulatorEntry]:
        acc = self._merkle(Side.OUTBOX, dest_chain_id)
        return acc.entries() if acc is not None else []

    def outbox_proof(self, dest_chain_id: int, key: MetadataDigest) -> Optional[InclusionProof]:
        """
        Inclusion proof of `key` in outbox_digest(dest_chain_id), or None
        if this chain never sent such a message.
        """
        acc = self._merkle(Side.OUTBOX, dest_chain_id)
        index = acc.index_of(key) if acc is not None else None
        if index is None:
            return None
        return acc.prove(index)
