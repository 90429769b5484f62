# helper/merkle.py
from __future__ import annotations

import hashlib
from typing import List

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"


def _normalize_hex(s: str) -> str:
    """
    Normalize and validate a hex-encoded string.

    - Accepts optional '0x' / '0X' prefix.
    - Strips surrounding whitespace.
    - Raises ValueError if the remaining characters are not valid hex.

    All Merkle inputs (leaves, siblings, roots) are 32-byte SHA-256 digests
    encoded as hex (64 hex chars); the length is enforced here.
    """
    if not isinstance(s, str):
        raise ValueError(f"Expected hex string, got {type(s).__name__}: {s!r}")

    s = s.strip().lower()
    if s.startswith("0x"):
        s = s[2:]

    try:
        raw = bytes.fromhex(s)
    except ValueError as exc:
        raise ValueError(f"Not a valid hex string: {s!r}") from exc

    if len(raw) != 32:
        raise ValueError(f"Expected a 32-byte hash, got {len(raw)} bytes: {s!r}")

    return s


def hash_leaf(key: str, payload_hash: str) -> str:
    """
    Leaf commitment of one (key, payload) entry:

        leaf = H(0x00 || key || sha256(payload))

    The prefix separates leaves from inner nodes so a node can never be
    presented as a leaf.
    """
    data = LEAF_PREFIX + bytes.fromhex(_normalize_hex(key)) + bytes.fromhex(_normalize_hex(payload_hash))
    return hashlib.sha256(data).hexdigest()


def hash_node(left: str, right: str) -> str:
    """
    Positional inner node: H(0x01 || left || right).

    Unlike a sorted-pair tree, swapping two children changes the parent,
    which keeps the whole tree sensitive to leaf order.
    """
    data = NODE_PREFIX + bytes.fromhex(_normalize_hex(left)) + bytes.fromhex(_normalize_hex(right))
    return hashlib.sha256(data).hexdigest()


def tree_depth(count: int) -> int:
    """Number of levels above the leaves in a tree of `count` leaves."""
    if count < 1:
        raise ValueError("Tree must have at least one leaf")
    depth = 0
    width = count
    while width > 1:
        width = (width + 1) // 2
        depth += 1
    return depth


def merkle_root(leaves: List[str]) -> str:
    """
    Root of a positional binary Merkle tree built in one pass from
    already-hashed leaves. An odd last node at a level is paired with
    itself.
    """
    if not leaves:
        raise ValueError("Cannot build Merkle tree with no leaves")

    level = [_normalize_hex(x) for x in leaves]
    while len(level) > 1:
        next_level: List[str] = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            next_level.append(hash_node(left, right))
        level = next_level
    return level[0]


def compute_root_from_proof(leaf: str, index: int, proof: List[str]) -> str:
    """
    Fold a leaf and its bottom-up siblings into a root:

        h = leaf
        for sib in proof:
            h = H(h, sib) if index is even else H(sib, h)
            index //= 2
    """
    h = _normalize_hex(leaf)
    for sib in proof:
        if index % 2 == 0:
            h = hash_node(h, sib)
        else:
            h = hash_node(sib, h)
        index //= 2
    return h
