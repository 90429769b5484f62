from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from xmailbox.core.enums import AccumulatorFamily, MailboxMode, Side
from xmailbox.core.errors import AuthenticationFailed, InvalidBlockTransition, NotFound
from xmailbox.core.keying import metadata_digest
from xmailbox.core.models import MailboxSnapshot, Message, MessageSent, Metadata
from xmailbox.core.state import InMemoryMailboxStore, MailboxStore, NullifierGuard
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


class SyncMailbox(Mailbox):
    """
    Block-scoped mailbox for synchronous composition.

    The store epoch *is* the block height. Messages are populated at most
    once per block, before any recv in that block, and consumed within the
    same block; at the next block boundary every inbox entry, outbox mark
    and digest of the previous block becomes invisible.

    State machine per block:

        Empty(N) --populate--> Populated(N) --[recv...]--> Empty(N+1)

    send() may run in either state and only touches the outbox side.
    The reset is an epoch advance, so repeating it is harmless.
    """

    mode = MailboxMode.SYNC

    def __init__(
        self,
        chain_id: int,
        *,
        accumulator: AccumulatorFamily = AccumulatorFamily.CHAINED,
        auth_policy: Optional[PopulateAuthPolicy] = None,
        clear_on_read: bool = False,
        start_block: int = 0,
        entropy: Optional[bytes] = None,
        store: Optional[MailboxStore] = None,
    ) -> None:
        self._chain_id = chain_id
        self.store = store if store is not None else InMemoryMailboxStore(accumulator, epoch=start_block)
        self.auth_policy = auth_policy if auth_policy is not None else OpenPopulatePolicy()
        self.clear_on_read = clear_on_read
        self._inbox_guard = NullifierGuard(self.store, Side.INBOX)
        self._outbox_guard = NullifierGuard(self.store, Side.OUTBOX)
        self._sessions = SessionIdSource(chain_id, entropy)
        self._populated_block: Optional[int] = None
        self._events: List[MessageSent] = []

    # --------------------------------------------------------------
    # Identity and lifecycle
    # --------------------------------------------------------------

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def current_block(self) -> int:
        return self.store.epoch

    @property
    def is_populated(self) -> bool:
        return self._populated_block == self.current_block

    def begin_block(self, height: int) -> None:
        if height < self.current_block:
            raise InvalidBlockTransition(
                f"chain {self._chain_id}: cannot go back from block {self.current_block} to {height}"
            )
        if self.store.advance_epoch(height):
            dropped = self.store.prune(before_epoch=height)
            logger.info(
                "chain %d: block %d begins, previous mailbox state reset (%d records dropped)",
                self._chain_id, height, dropped,
            )

    # --------------------------------------------------------------
    # Outbox
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
                block_height=self.current_block,
                log_index=len(self._events),
                key=key,
                message=message,
            )
        )
        logger.debug("chain %d: sent %s to chain %d", self._chain_id, key, metadata.dest_chain_id)

    # --------------------------------------------------------------
    # Inbox
    # --------------------------------------------------------------

    def populate_inbox(
        self,
        messages: Sequence[Message],
        aux: bytes = b"",
        *,
        block_height: Optional[int] = None,
    ) -> None:
        target = self.current_block if block_height is None else block_height
        if target < self.current_block:
            raise InvalidBlockTransition(
                f"chain {self._chain_id}: populate for past block {target} (current {self.current_block})"
            )

        if not self.auth_policy.authenticate(self._chain_id, messages, aux):
            logger.warning("chain %d: populate witness rejected (%d messages)", self._chain_id, len(messages))
            raise AuthenticationFailed(f"chain {self._chain_id}: populate witness rejected")

        # A batch for a new block is checked against the empty epoch it will
        # land in; only in-batch collisions can occur there.
        guard = self._inbox_guard if target == self.current_block else None
        staged = stage_inbox_batch(self._chain_id, messages, guard)

        # a colliding batch reports DuplicateKey before the once-per-block rule
        if target == self.current_block and self.is_populated:
            raise InvalidBlockTransition(
                f"chain {self._chain_id}: block {target} was already populated"
            )

        self.begin_block(target)
        written = commit_inbox_batch(self._inbox_guard, staged)
        self._populated_block = target
        logger.debug("chain %d: populated block %d with %s", self._chain_id, target, written)

    def recv(self, metadata: Metadata) -> bytes:
        check_destination(self._chain_id, metadata)
        key = metadata_digest(metadata)
        slot = self.store.get_slot(Side.INBOX, key)
        if slot is None or slot.payload is None:
            raise NotFound(f"chain {self._chain_id}: no inbox entry {key} in block {self.current_block}", key=key)

        payload = slot.payload
        if self.clear_on_read:
            self.store.clear_payload(Side.INBOX, key)
        return payload

    # --------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------

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
            block_height=self.current_block,
            inbox_digests=self.store.digests(Side.INBOX),
            outbox_digests=self.store.digests(Side.OUTBOX),
        )
