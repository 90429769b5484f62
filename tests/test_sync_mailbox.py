import pytest
from pydantic import ValidationError

from xmailbox.core.enums import AccumulatorFamily, Side
from xmailbox.core.errors import (
    DuplicateKey,
    InvalidBlockTransition,
    NotFound,
    WrongDestination,
    WrongSource,
)
from xmailbox.core.keying import ZERO_DIGEST, metadata_digest
from xmailbox.core.models import Message
from xmailbox.mailbox.sync import SyncMailbox

from conftest import ADDR_A, ADDR_B, CHAIN_A, CHAIN_B, ENTROPY


class TestSend:

    def test_send_updates_outbox_and_emits(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        meta = make_meta()
        a.send(meta, b"hello", caller=ADDR_A)
        assert a.outbox_digest(CHAIN_B) != ZERO_DIGEST
        assert a.outbox_digest(3) == ZERO_DIGEST
        [ev] = a.events()
        assert ev.key == metadata_digest(meta)
        assert ev.block_height == 0
        assert ev.message.payload == b"hello"

    def test_wrong_chain(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        with pytest.raises(WrongSource):
            b.send(make_meta(), b"x", caller=ADDR_A)

    def test_wrong_caller(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        with pytest.raises(WrongSource):
            a.send(make_meta(), b"x", caller=ADDR_B)
        assert a.outbox_digest(CHAIN_B) == ZERO_DIGEST
        assert a.events() == []

    def test_text_payload(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        twin = SyncMailbox(CHAIN_A, entropy=ENTROPY)
        a.send(make_meta(), "hello", caller=ADDR_A)
        twin.send(make_meta(), b"hello", caller=ADDR_A)
        assert a.outbox_digest(CHAIN_B) == twin.outbox_digest(CHAIN_B)
        assert a.events()[0].message.payload == b"hello"

    def test_failed_send_leaves_no_mark(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        with pytest.raises(ValidationError):
            a.send(make_meta(), 12345, caller=ADDR_A)
        assert a.outbox_digest(CHAIN_B) == ZERO_DIGEST
        assert a.events() == []
        assert a.store.get_slot(Side.OUTBOX, metadata_digest(make_meta())) is None
        a.send(make_meta(), b"hello", caller=ADDR_A)
        assert len(a.events()) == 1

    def test_duplicate_send(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        digest = a.outbox_digest(CHAIN_B)
        with pytest.raises(DuplicateKey):
            a.send(make_meta(), b"different", caller=ADDR_A)
        assert a.outbox_digest(CHAIN_B) == digest

    def test_same_key_allowed_again_next_block(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        a.begin_block(1)
        a.send(make_meta(), b"x", caller=ADDR_A)
        assert len(a.events()) == 2


class TestPopulateAndRecv:

    def test_round_trip(self, sync_pair, make_meta) -> None:
        a, b = sync_pair
        meta = make_meta()
        a.send(meta, b"hello", caller=ADDR_A)
        b.populate_inbox([Message(metadata=meta, payload=b"hello")])
        assert b.recv(meta) == b"hello"
        assert b.inbox_digest(CHAIN_A) == a.outbox_digest(CHAIN_B)

    def test_concrete_scenario(self, sync_pair, make_meta) -> None:
        a, b = sync_pair
        meta = make_meta(session_id=7, nonce=0)
        a.send(meta, b"hello", caller=ADDR_A)
        b.populate_inbox([Message(metadata=meta, payload="hello")])
        assert b.recv(meta) == b"hello"
        with pytest.raises(NotFound):
            b.recv(make_meta(session_id=8))

    def test_recv_wrong_destination(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        with pytest.raises(WrongDestination):
            a.recv(make_meta())

    def test_recv_does_not_delete_by_default(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        b.populate_inbox([Message(metadata=make_meta(), payload=b"p")])
        assert b.recv(make_meta()) == b"p"
        assert b.recv(make_meta()) == b"p"

    def test_clear_on_read(self, make_meta) -> None:
        b = SyncMailbox(CHAIN_B, clear_on_read=True, entropy=ENTROPY)
        msg = Message(metadata=make_meta(), payload=b"p")
        b.populate_inbox([msg])
        digest = b.inbox_digest(CHAIN_A)
        assert b.recv(make_meta()) == b"p"
        with pytest.raises(NotFound):
            b.recv(make_meta())
        # digests and nullifiers are untouched by the cleanup
        assert b.inbox_digest(CHAIN_A) == digest
        slot = b.store.get_slot(Side.INBOX, metadata_digest(make_meta()))
        assert slot.written and slot.payload is None

    def test_duplicate_populate_across_batches(self, make_meta) -> None:
        b = SyncMailbox(CHAIN_B, entropy=ENTROPY)
        b.populate_inbox([Message(metadata=make_meta(), payload=b"first")], block_height=1)
        with pytest.raises(DuplicateKey):
            b.populate_inbox([Message(metadata=make_meta(), payload=b"second")], block_height=1)
        assert b.recv(make_meta()) == b"first"

    def test_second_batch_in_block_rejected(self, make_meta) -> None:
        b = SyncMailbox(CHAIN_B, entropy=ENTROPY)
        b.populate_inbox([Message(metadata=make_meta(session_id=1), payload=b"first")])
        with pytest.raises(InvalidBlockTransition):
            b.populate_inbox([Message(metadata=make_meta(session_id=2), payload=b"other")])
        with pytest.raises(NotFound):
            b.recv(make_meta(session_id=2))

    def test_duplicate_key_in_batch(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        with pytest.raises(DuplicateKey):
            b.populate_inbox(
                [
                    Message(metadata=make_meta(), payload=b"first"),
                    Message(metadata=make_meta(), payload=b"second"),
                ]
            )
        with pytest.raises(NotFound):
            b.recv(make_meta())
        assert b.inbox_digest(CHAIN_A) == ZERO_DIGEST

    def test_batch_is_atomic(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        good = Message(metadata=make_meta(), payload=b"ok")
        misrouted = Message(metadata=make_meta(dest_chain_id=9, session_id=1), payload=b"no")
        with pytest.raises(WrongDestination):
            b.populate_inbox([good, misrouted])
        with pytest.raises(NotFound):
            b.recv(make_meta())
        assert not b.is_populated
        # the block can still be populated after the rejection
        b.populate_inbox([good])
        assert b.recv(make_meta()) == b"ok"

    def test_rejected_batch_does_not_reset(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        b.populate_inbox([Message(metadata=make_meta(), payload=b"block0")])
        bad = Message(metadata=make_meta(dest_chain_id=5), payload=b"x")
        with pytest.raises(WrongDestination):
            b.populate_inbox([bad], block_height=1)
        assert b.current_block == 0
        assert b.recv(make_meta()) == b"block0"


class TestBlockReset:

    def test_entry_gone_next_block(self, sync_pair, make_meta) -> None:
        a, b = sync_pair
        meta = make_meta()
        a.send(meta, b"hello", caller=ADDR_A)
        b.populate_inbox([Message(metadata=meta, payload=b"hello")], block_height=0)
        assert b.recv(meta) == b"hello"

        b.populate_inbox([], block_height=1)
        with pytest.raises(NotFound):
            b.recv(meta)
        assert b.inbox_digest(CHAIN_A) == ZERO_DIGEST

    def test_repopulated_next_block(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        msg = Message(metadata=make_meta(), payload=b"hello")
        b.populate_inbox([msg], block_height=0)
        b.populate_inbox([msg], block_height=1)
        assert b.recv(make_meta()) == b"hello"

    def test_begin_block_idempotent(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        b.begin_block(4)
        b.populate_inbox([Message(metadata=make_meta(), payload=b"p")])
        b.begin_block(4)
        assert b.current_block == 4
        assert b.recv(make_meta()) == b"p"

    def test_no_going_back(self, sync_pair, make_meta) -> None:
        _, b = sync_pair
        b.begin_block(3)
        with pytest.raises(InvalidBlockTransition):
            b.begin_block(2)
        with pytest.raises(InvalidBlockTransition):
            b.populate_inbox([], block_height=2)

    def test_sends_before_populate_survive(self, make_meta) -> None:
        # chain B both sends and receives within block 5
        b = SyncMailbox(CHAIN_B, entropy=ENTROPY)
        b.begin_block(5)
        out = make_meta(src_chain_id=CHAIN_B, dest_chain_id=CHAIN_A, src_address=ADDR_B, dest_address=ADDR_A)
        b.send(out, b"reply", caller=ADDR_B)
        b.populate_inbox([Message(metadata=make_meta(), payload=b"p")], block_height=5)
        assert b.outbox_digest(CHAIN_A) != ZERO_DIGEST

    def test_outbox_reset_next_block(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        a.begin_block(1)
        assert a.outbox_digest(CHAIN_B) == ZERO_DIGEST
        assert a.snapshot().outbox_digests == {}

    def test_stale_blocks_pruned(self, sync_pair, make_meta) -> None:
        a, b = sync_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        b.populate_inbox([Message(metadata=make_meta(), payload=b"x")])
        assert len(a.store) == 1 and len(b.store) == 1
        a.begin_block(1)
        b.populate_inbox([], block_height=1)
        assert len(a.store) == 0 and len(b.store) == 0


class TestOrderSensitivity:

    @pytest.mark.parametrize("family", list(AccumulatorFamily))
    def test_batches_in_different_order(self, make_meta, family) -> None:
        m1 = Message(metadata=make_meta(session_id=1), payload=b"one")
        m2 = Message(metadata=make_meta(session_id=2), payload=b"two")
        x = SyncMailbox(CHAIN_B, accumulator=family, entropy=ENTROPY)
        y = SyncMailbox(CHAIN_B, accumulator=family, entropy=ENTROPY)
        x.populate_inbox([m1, m2])
        y.populate_inbox([m2, m1])
        assert x.inbox_digest(CHAIN_A) != y.inbox_digest(CHAIN_A)


class TestQueries:

    def test_chain_id_fixed(self, sync_pair) -> None:
        a, _ = sync_pair
        assert a.chain_id == CHAIN_A
        with pytest.raises(AttributeError):
            a.chain_id = 5

    def test_rand_session_id(self, sync_pair, make_meta) -> None:
        a, b = sync_pair
        ids = {a.rand_session_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(0 <= i < 2**128 for i in ids)
        # same entropy, different chain -> different sequence
        assert b.rand_session_id() != SyncMailbox(CHAIN_A, entropy=ENTROPY).rand_session_id()

    def test_session_ids_make_nonce_zero_unique(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        for _ in range(20):
            a.send(make_meta(session_id=a.rand_session_id(), nonce=0), b"x", caller=ADDR_A)
        assert len({ev.key for ev in a.events()}) == 20

    def test_snapshot(self, sync_pair, make_meta) -> None:
        a, _ = sync_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        snap = a.snapshot()
        assert snap.verify_root()
        assert snap.outbox_digests == {CHAIN_B: a.outbox_digest(CHAIN_B)}
        assert snap.inbox_digests == {}
