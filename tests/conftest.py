"""Shared fixtures for mailbox tests.

Chain A has id 1, chain B has id 2. Addresses are fixed 32-byte patterns so
that metadata digests are reproducible across runs.
"""
from typing import Callable

import pytest

from xmailbox.core.models import Metadata
from xmailbox.mailbox.asynchronous import AsyncMailbox
from xmailbox.mailbox.sync import SyncMailbox

CHAIN_A = 1
CHAIN_B = 2
ADDR_A = bytes([0xAA]) * 32
ADDR_B = bytes([0xBB]) * 32
ENTROPY = b"\x42" * 32


@pytest.fixture
def make_meta() -> Callable[..., Metadata]:
    """Factory for A -> B metadata with overridable fields."""

    def _make(**overrides) -> Metadata:
        fields = dict(
            src_chain_id=CHAIN_A,
            dest_chain_id=CHAIN_B,
            src_address=ADDR_A,
            dest_address=ADDR_B,
            session_id=7,
            nonce=0,
        )
        fields.update(overrides)
        return Metadata(**fields)

    return _make


@pytest.fixture
def sync_pair() -> tuple:
    """(chain A, chain B) synchronous mailboxes, both at block 0."""
    return SyncMailbox(CHAIN_A, entropy=ENTROPY), SyncMailbox(CHAIN_B, entropy=ENTROPY)


@pytest.fixture
def async_pair() -> tuple:
    """(chain A, chain B) asynchronous mailboxes."""
    return AsyncMailbox(CHAIN_A, entropy=ENTROPY), AsyncMailbox(CHAIN_B, entropy=ENTROPY)
