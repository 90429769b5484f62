from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from xmailbox.core.enums import AccumulatorFamily
from xmailbox.core.keying import ZERO_DIGEST, key_bytes, payload_hash
from xmailbox.core.models import AccumulatorEntry, InclusionProof, MetadataDigest
from xmailbox.helper.merkle import (
    compute_root_from_proof,
    hash_leaf,
    hash_node,
    merkle_root,
    tree_depth,
)


class Accumulator(ABC):
    """
    Incremental, order-sensitive commitment over a growing sequence of
    (key, payload) entries.

    The same family is used for the inbox and the outbox of a mailbox, so
    an honest relay produces identical values on both sides. Every
    accumulator starts at ZERO_DIGEST.
    """

    family: AccumulatorFamily

    @property
    @abstractmethod
    def value(self) -> str:
        """Current accumulator value as hex."""
        raise NotImplementedError

    @property
    @abstractmethod
    def count(self) -> int:
        """Number of entries folded in so far."""
        raise NotImplementedError

    @abstractmethod
    def append(self, key: MetadataDigest, payload: bytes) -> str:
        """Fold one entry in and return the new value."""
        raise NotImplementedError


class ChainedHashAccumulator(Accumulator):
    """
    d0 = 0^32,  d' = sha256(d || key || payload)

    Cheap and sufficient when settlement compares two values for equality
    (synchronous mode). It offers no way to prove membership of a single
    entry without replaying the whole sequence.
    """

    family = AccumulatorFamily.CHAINED

    def __init__(self) -> None:
        self._value = bytes.fromhex(ZERO_DIGEST)
        self._count = 0

    @property
    def value(self) -> str:
        return self._value.hex()

    @property
    def count(self) -> int:
        return self._count

    def append(self, key: MetadataDigest, payload: bytes) -> str:
        self._value = hashlib.sha256(self._value + key_bytes(key) + payload).digest()
        self._count += 1
        return self.value


class MerkleAccumulator(Accumulator):
    """
    Append-only positional Merkle tree over leaf commitments.

    Internal structure:
        _levels[0]   leaves, leaf_i = H(0x00 || key || sha256(payload))
        _levels[l]   inner nodes; an odd last node is paired with itself
        _entries     the (key, payload_hash) sequence, in append order
        _index       key -> leaf index, for proof lookups

    Exposed value:
        ZERO_DIGEST                          if empty
        sha256(u64_be(count) || root)        otherwise

    Mixing the count into the value pins the tree shape, so a proof's
    sibling list must have exactly tree_depth(count) elements.

    append() only recomputes the path from the new leaf to the root and
    prove() reads siblings off the stored levels, both in O(log n).
    """

    family = AccumulatorFamily.MERKLE

    def __init__(self) -> None:
        self._levels: List[List[str]] = []
        self._entries: List[AccumulatorEntry] = []
        self._index: Dict[MetadataDigest, int] = {}

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def root(self) -> Optional[str]:
        if not self._levels:
            return None
        return self._levels[-1][0]

    @property
    def value(self) -> str:
        root = self.root
        if root is None:
            return ZERO_DIGEST
        return seal_root(root, self.count)

    def entries(self) -> List[AccumulatorEntry]:
        return list(self._entries)

    def index_of(self, key: MetadataDigest) -> Optional[int]:
        return self._index.get(key)

    def append(self, key: MetadataDigest, payload: bytes) -> str:
        return self.append_entry(AccumulatorEntry(key=key, payload_hash=payload_hash(payload)))

    def append_entry(self, entry: AccumulatorEntry) -> str:
        leaf = hash_leaf(entry.key, entry.payload_hash)
        if not self._levels:
            self._levels.append([])
        self._levels[0].append(leaf)

        idx = len(self._levels[0]) - 1
        level = 0
        while len(self._levels[level]) > 1:
            nodes = self._levels[level]
            parent = idx // 2
            left = nodes[2 * parent]
            right = nodes[2 * parent + 1] if 2 * parent + 1 < len(nodes) else left

            if level + 1 == len(self._levels):
                self._levels.append([])
            above = self._levels[level + 1]
            node = hash_node(left, right)
            if parent < len(above):
                above[parent] = node
            else:
                above.append(node)

            idx = parent
            level += 1

        # setdefault: the mailbox nullifiers keep keys unique; the first
        # occurrence wins if a caller replays entries by hand.
        self._index.setdefault(entry.key, len(self._entries))
        self._entries.append(entry)
        return self.value

    def prove(self, index: int) -> InclusionProof:
        if index < 0 or index >= self.count:
            raise IndexError(f"Leaf index {index} out of range for {self.count} leaves")

        siblings: List[str] = []
        idx = index
        for nodes in self._levels[:-1]:
            sib = idx ^ 1
            siblings.append(nodes[sib] if sib < len(nodes) else nodes[idx])
            idx //= 2

        return InclusionProof(
            index=index,
            count=self.count,
            leaf=self._levels[0][index],
            siblings=siblings,
        )


def seal_root(root: str, count: int) -> str:
    return hashlib.sha256(count.to_bytes(8, "big") + bytes.fromhex(root)).hexdigest()


def replay_value(entries: Sequence[AccumulatorEntry]) -> str:
    """
    Merkle accumulator value of `entries`, rebuilt in one pass instead of
    by incremental appends.
    """
    if not entries:
        return ZERO_DIGEST
    root = merkle_root([hash_leaf(e.key, e.payload_hash) for e in entries])
    return seal_root(root, len(entries))


def verify_inclusion(proof: InclusionProof, value: str) -> bool:
    """
    Check a Merkle inclusion proof against an exposed accumulator value
    alone, without access to the other leaves.
    """
    if proof.index >= proof.count:
        return False
    if len(proof.siblings) != tree_depth(proof.count):
        return False
    try:
        root = compute_root_from_proof(proof.leaf, proof.index, proof.siblings)
    except ValueError:
        return False
    return seal_root(root, proof.count) == value


def make_accumulator(family: AccumulatorFamily) -> Accumulator:
    """Factory: a fresh accumulator of the configured family."""
    if family == AccumulatorFamily.CHAINED:
        return ChainedHashAccumulator()
    if family == AccumulatorFamily.MERKLE:
        return MerkleAccumulator()
    raise ValueError(f"Unknown accumulator family: {family}")
