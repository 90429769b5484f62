from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from xmailbox.core.enums import AccumulatorFamily, Side
from xmailbox.core.errors import DuplicateKey
from xmailbox.core.keying import ZERO_DIGEST
from xmailbox.core.models import MetadataDigest
from xmailbox.helper.accumulator import Accumulator, make_accumulator

# ======================================================================
# 0. Slot: one entry of the unified inbox / nullifier key space
# ======================================================================

@dataclass
class Slot:
    """
    State of one metadata digest on one side of the mailbox.

    The nullifier set and the inbox map are two views of the same key
    space, so they are stored together:

        written   the nullifier mark; never cleared within an epoch
        payload   the inbox value; None for outbox slots (digest-only
                  tracking) or after an opt-in delete-on-read

    `epoch` tags the slot with the generation in which it was written.
    A slot from an older epoch is treated as absent.
    """
    epoch: int
    written: bool = False
    payload: Optional[bytes] = None


# ======================================================================
# 1. Abstract interface: MailboxStore
# ======================================================================

class MailboxStore(ABC):
    """
    Storage owned by exactly one mailbox instance.

    It holds two logically distinct components:

        (1) the keyed slot store (Side, MetadataDigest) -> Slot, backing
            both the inbox and the two nullifier guards;
        (2) the digest table (Side, counterpart chain id) -> accumulator.

    Both are scoped to an epoch. Resetting the mailbox means advancing the
    epoch; nothing is destructively cleared, and entries from earlier
    epochs simply stop being visible. Advancing to the current epoch is a
    no-op, so a reset can be replayed safely. Stale records are only
    dropped by an explicit prune().

    The store decides nothing about validity; the mailbox checks
    preconditions before writing.
    """

    @property
    @abstractmethod
    def epoch(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def advance_epoch(self, epoch: int) -> bool:
        """
        Move to `epoch`. Returns True if the epoch changed.
        Raises ValueError when asked to go backwards.
        """
        raise NotImplementedError

    @abstractmethod
    def get_slot(self, side: Side, key: MetadataDigest) -> Optional[Slot]:
        """Slot for `key` in the current epoch, or None."""
        raise NotImplementedError

    @abstractmethod
    def write_slot(self, side: Side, key: MetadataDigest, payload: Optional[bytes]) -> None:
        """Mark `key` as written in the current epoch and store its payload."""
        raise NotImplementedError

    @abstractmethod
    def clear_payload(self, side: Side, key: MetadataDigest) -> None:
        """Drop the payload but keep the nullifier mark."""
        raise NotImplementedError

    @abstractmethod
    def accumulator(self, side: Side, chain_id: int) -> Accumulator:
        """
        Live accumulator for (side, counterpart chain) in the current epoch.
        A fresh one is created when none exists yet for this epoch.
        """
        raise NotImplementedError

    @abstractmethod
    def peek_accumulator(self, side: Side, chain_id: int) -> Optional[Accumulator]:
        """Like accumulator(), but returns None instead of creating one."""
        raise NotImplementedError

    @abstractmethod
    def digest(self, side: Side, chain_id: int) -> str:
        """Current accumulator value; ZERO_DIGEST if nothing was folded in this epoch."""
        raise NotImplementedError

    @abstractmethod
    def digests(self, side: Side) -> Dict[int, str]:
        """All non-empty digests of one side in the current epoch."""
        raise NotImplementedError

    @abstractmethod
    def prune(self, before_epoch: int) -> int:
        """
        Physically drop slots and accumulators older than `before_epoch`.
        Returns the number of records removed.
        """
        raise NotImplementedError


# ======================================================================
# 2. Concrete in-memory implementation
# ======================================================================

class InMemoryMailboxStore(MailboxStore):
    """
    Internal structure:
        _slots:   (side, key)      -> Slot
        _digests: (side, chain_id) -> (epoch, Accumulator)
    """

    def __init__(self, family: AccumulatorFamily, *, epoch: int = 0) -> None:
        self.family = family
        self._epoch = epoch
        self._slots: Dict[Tuple[Side, MetadataDigest], Slot] = {}
        self._digests: Dict[Tuple[Side, int], Tuple[int, Accumulator]] = {}

    # --------------------------------------------------------------
    # 2.1 Epoch
    # --------------------------------------------------------------

    @property
    def epoch(self) -> int:
        return self._epoch

    def advance_epoch(self, epoch: int) -> bool:
        if epoch < self._epoch:
            raise ValueError(f"Cannot move epoch backwards: {epoch} < {self._epoch}")
        if epoch == self._epoch:
            return False
        self._epoch = epoch
        return True

    # --------------------------------------------------------------
    # 2.2 Slots
    # --------------------------------------------------------------

    def get_slot(self, side: Side, key: MetadataDigest) -> Optional[Slot]:
        slot = self._slots.get((side, key))
        if slot is None or slot.epoch != self._epoch:
            return None
        return slot

    def write_slot(self, side: Side, key: MetadataDigest, payload: Optional[bytes]) -> None:
        self._slots[(side, key)] = Slot(epoch=self._epoch, written=True, payload=payload)

    def clear_payload(self, side: Side, key: MetadataDigest) -> None:
        slot = self.get_slot(side, key)
        if slot is not None:
            slot.payload = None

    # --------------------------------------------------------------
    # 2.3 Digests
    # --------------------------------------------------------------

    def accumulator(self, side: Side, chain_id: int) -> Accumulator:
        current = self._digests.get((side, chain_id))
        if current is None or current[0] != self._epoch:
            acc = make_accumulator(self.family)
            self._digests[(side, chain_id)] = (self._epoch, acc)
            return acc
        return current[1]

    def peek_accumulator(self, side: Side, chain_id: int) -> Optional[Accumulator]:
        current = self._digests.get((side, chain_id))
        if current is None or current[0] != self._epoch:
            return None
        return current[1]

    def digest(self, side: Side, chain_id: int) -> str:
        acc = self.peek_accumulator(side, chain_id)
        return acc.value if acc is not None else ZERO_DIGEST

    def digests(self, side: Side) -> Dict[int, str]:
        return {
            chain_id: acc.value
            for (s, chain_id), (epoch, acc) in self._digests.items()
            if s == side and epoch == self._epoch and acc.count > 0
        }

    # --------------------------------------------------------------
    # 2.4 Housekeeping
    # --------------------------------------------------------------

    def prune(self, before_epoch: int) -> int:
        stale_slots = [k for k, slot in self._slots.items() if slot.epoch < before_epoch]
        for k in stale_slots:
            del self._slots[k]
        stale_digests = [k for k, (epoch, _) in self._digests.items() if epoch < before_epoch]
        for k in stale_digests:
            del self._digests[k]
        return len(stale_slots) + len(stale_digests)

    def __len__(self) -> int:
        return len(self._slots)


# ======================================================================
# 3. NullifierGuard: replay protection view over the slot store
# ======================================================================

class NullifierGuard:
    """
    checkAndMark(key) over one side of a MailboxStore.

    One guard protects outbox writes (a chain never emits two messages
    colliding on the same metadata digest); a second protects inbox
    writes (a populate batch can never overwrite a filled slot). Both
    follow the store's epoch, so they reset with it in synchronous mode
    and persist in asynchronous mode.
    """

    def __init__(self, store: MailboxStore, side: Side) -> None:
        self.store = store
        self.side = side

    def is_marked(self, key: MetadataDigest) -> bool:
        slot = self.store.get_slot(self.side, key)
        return slot is not None and slot.written

    def check(self, key: MetadataDigest) -> None:
        if self.is_marked(key):
            raise DuplicateKey(f"{self.side.value} key {key} already written", key=key)

    def mark(self, key: MetadataDigest, payload: Optional[bytes] = None) -> None:
        self.store.write_slot(self.side, key, payload)

    def check_and_mark(self, key: MetadataDigest, payload: Optional[bytes] = None) -> None:
        self.check(key)
        self.mark(key, payload)
