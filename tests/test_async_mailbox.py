import pytest
from pydantic import ValidationError

from xmailbox.core.enums import Side
from xmailbox.core.errors import DuplicateKey, InvalidBlockTransition, NotFound, WrongDestination
from xmailbox.core.keying import ZERO_DIGEST, metadata_digest, payload_hash
from xmailbox.core.models import AccumulatorEntry, Message
from xmailbox.helper.accumulator import verify_inclusion
from xmailbox.mailbox.asynchronous import AsyncMailbox

from conftest import ADDR_A, CHAIN_A, CHAIN_B, ENTROPY


class TestPersistence:

    def test_entry_survives_blocks(self, async_pair, make_meta) -> None:
        a, b = async_pair
        meta = make_meta()
        a.send(meta, b"later", caller=ADDR_A)
        b.populate_inbox([Message(metadata=meta, payload=b"later")], block_height=3)
        for height in (4, 10, 100):
            b.begin_block(height)
            assert b.recv(meta) == b"later"
        assert b.inbox_digest(CHAIN_A) == a.outbox_digest(CHAIN_B)

    def test_duplicate_in_later_block(self, async_pair, make_meta) -> None:
        _, b = async_pair
        msg = Message(metadata=make_meta(), payload=b"once")
        b.populate_inbox([msg], block_height=1)
        digest = b.inbox_digest(CHAIN_A)
        with pytest.raises(DuplicateKey):
            b.populate_inbox([msg], block_height=5)
        assert b.inbox_digest(CHAIN_A) == digest
        # a rejected batch does not move the block either
        assert b.current_block == 1

    def test_same_metadata_other_payload(self, async_pair, make_meta) -> None:
        _, b = async_pair
        b.populate_inbox([Message(metadata=make_meta(), payload=b"first")], block_height=1)
        digest = b.inbox_digest(CHAIN_A)
        with pytest.raises(DuplicateKey):
            b.populate_inbox([Message(metadata=make_meta(), payload=b"second")], block_height=2)
        assert b.recv(make_meta()) == b"first"
        assert b.inbox_digest(CHAIN_A) == digest

    def test_failed_send_leaves_no_mark(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        with pytest.raises(ValidationError):
            a.send(make_meta(), 12345, caller=ADDR_A)
        assert a.outbox_digest(CHAIN_B) == ZERO_DIGEST
        assert a.events() == []
        assert a.store.get_slot(Side.OUTBOX, metadata_digest(make_meta())) is None
        a.send(make_meta(), "hello", caller=ADDR_A)
        assert a.events()[0].message.payload == b"hello"
        assert a.outbox_entries(CHAIN_B)[0].payload_hash == payload_hash(b"hello")

    def test_outbox_nullifier_persists(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        a.begin_block(50)
        with pytest.raises(DuplicateKey):
            a.send(make_meta(), b"x", caller=ADDR_A)

    def test_several_populates_per_block(self, async_pair, make_meta) -> None:
        _, b = async_pair
        b.populate_inbox([Message(metadata=make_meta(session_id=1), payload=b"1")])
        b.populate_inbox([Message(metadata=make_meta(session_id=2), payload=b"2")])
        assert b.recv(make_meta(session_id=1)) == b"1"
        assert b.recv(make_meta(session_id=2)) == b"2"

    def test_empty_batch(self, async_pair) -> None:
        _, b = async_pair
        b.populate_inbox([])
        assert b.inbox_digest(CHAIN_A) == ZERO_DIGEST

    def test_past_block_rejected(self, async_pair, make_meta) -> None:
        _, b = async_pair
        b.begin_block(7)
        with pytest.raises(InvalidBlockTransition):
            b.populate_inbox([Message(metadata=make_meta(), payload=b"p")], block_height=6)
        with pytest.raises(NotFound):
            b.recv(make_meta())


class TestErrors:

    def test_not_found(self, async_pair, make_meta) -> None:
        _, b = async_pair
        with pytest.raises(NotFound) as exc_info:
            b.recv(make_meta(session_id=8))
        assert exc_info.value.key == metadata_digest(make_meta(session_id=8))

    def test_batch_is_atomic(self, async_pair, make_meta) -> None:
        _, b = async_pair
        with pytest.raises(WrongDestination):
            b.populate_inbox(
                [
                    Message(metadata=make_meta(session_id=1), payload=b"ok"),
                    Message(metadata=make_meta(session_id=2, dest_chain_id=CHAIN_A), payload=b"bad"),
                ]
            )
        with pytest.raises(NotFound):
            b.recv(make_meta(session_id=1))
        assert b.inbox_entries(CHAIN_A) == []


class TestDigests:

    def test_order_sensitive(self, make_meta) -> None:
        m1 = Message(metadata=make_meta(session_id=1), payload=b"one")
        m2 = Message(metadata=make_meta(session_id=2), payload=b"two")
        x = AsyncMailbox(CHAIN_B, entropy=ENTROPY)
        y = AsyncMailbox(CHAIN_B, entropy=ENTROPY)
        x.populate_inbox([m1, m2])
        y.populate_inbox([m2, m1])
        assert x.inbox_digest(CHAIN_A) != y.inbox_digest(CHAIN_A)

    def test_inbox_entries(self, async_pair, make_meta) -> None:
        _, b = async_pair
        meta = make_meta()
        b.populate_inbox([Message(metadata=meta, payload=b"p")])
        assert b.inbox_entries(CHAIN_A) == [
            AccumulatorEntry(key=metadata_digest(meta), payload_hash=payload_hash(b"p"))
        ]
        assert b.inbox_entries(3) == []

    def test_outbox_proof(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        keys = []
        for session in range(5):
            meta = make_meta(session_id=session)
            a.send(meta, b"payload-%d" % session, caller=ADDR_A)
            keys.append(metadata_digest(meta))

        digest = a.outbox_digest(CHAIN_B)
        for index, key in enumerate(keys):
            proof = a.outbox_proof(CHAIN_B, key)
            assert proof is not None
            assert proof.index == index and proof.count == 5
            assert verify_inclusion(proof, digest)

        assert a.outbox_proof(CHAIN_B, "ff" * 32) is None
        assert a.outbox_proof(3, keys[0]) is None

    def test_queries_do_not_create_accumulators(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        assert a.inbox_entries(3) == []
        assert a.outbox_entries(3) == []
        assert a.outbox_proof(3, metadata_digest(make_meta())) is None
        assert a.store.peek_accumulator(Side.INBOX, 3) is None
        assert a.store.peek_accumulator(Side.OUTBOX, 3) is None
        assert a.snapshot().outbox_digests == {}

    def test_snapshot_roots(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        a.send(make_meta(), b"x", caller=ADDR_A)
        snap = a.snapshot()
        assert snap.verify_root()
        tampered = snap.model_copy(update={"outbox_digests": {CHAIN_B: ZERO_DIGEST}})
        assert not tampered.verify_root()

    def test_outbox_entries_follow_send_order(self, async_pair, make_meta) -> None:
        a, _ = async_pair
        metas = [make_meta(session_id=s) for s in (3, 1, 2)]
        for meta in metas:
            a.send(meta, b"x", caller=ADDR_A)
        assert [e.key for e in a.outbox_entries(CHAIN_B)] == [metadata_digest(m) for m in metas]
