# src/xmailbox/settlement/checker.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from xmailbox.core.enums import MailboxMode
from xmailbox.core.keying import ZERO_DIGEST
from xmailbox.core.models import AccumulatorEntry, InclusionProof, MailboxSnapshot, MetadataDigest
from xmailbox.helper.accumulator import replay_value, verify_inclusion
from xmailbox.helper.merkle import hash_leaf

JsonDict = Dict[str, Any]


class ConsistencyResult(BaseModel):
    """
    Verdict of one settlement check for the ordered pair

        src_chain_id (outbox side)  ->  dest_chain_id (inbox side)

    Fields:
      * consistent:
          True iff the destination inbox is justified by the source outbox
          (equality in sync mode, subset in async mode).
      * reason:
          Human-readable explanation when the check fails.
      * metadata:
          Structured diagnostics (digests, heights, offending keys).

    An inconsistent result is an externally observed fault of the relay or
    populate step, never an operation failure of the mailboxes themselves.
    """

    consistent: bool
    mode: MailboxMode
    src_chain_id: int
    dest_chain_id: int
    reason: Optional[str] = None
    metadata: JsonDict = Field(default_factory=dict)


class SubsetWitness(BaseModel):
    """
    Inclusion proofs of inbox entries in the source outbox, keyed by
    metadata digest. `missing` lists entries the source could not prove.
    """

    proofs: Dict[MetadataDigest, InclusionProof] = Field(default_factory=dict)
    missing: List[MetadataDigest] = Field(default_factory=list)


class ConsistencyChecker:
    """Common helpers of the synchronous and asynchronous checkers."""

    mode: MailboxMode

    def _fail(self, src: int, dest: int, reason: str, **metadata: Any) -> ConsistencyResult:
        return ConsistencyResult(
            consistent=False,
            mode=self.mode,
            src_chain_id=src,
            dest_chain_id=dest,
            reason=reason,
            metadata=metadata,
        )

    def _check_snapshots(
        self, dest_snapshot: MailboxSnapshot, src_snapshot: MailboxSnapshot
    ) -> Optional[ConsistencyResult]:
        src, dest = src_snapshot.chain_id, dest_snapshot.chain_id
        if not src_snapshot.verify_root():
            return self._fail(src, dest, "source snapshot does not match its state root")
        if not dest_snapshot.verify_root():
            return self._fail(src, dest, "destination snapshot does not match its state root")
        return None


class SyncConsistencyChecker(ConsistencyChecker):
    """
    Per block, per chain pair (i, j):

        inboxDigest_i[j] == outboxDigest_j[i]

    Both snapshots must be taken at the same block height, since
    synchronous mailboxes reset their digests at every block.
    """

    mode = MailboxMode.SYNC

    def check(self, dest_snapshot: MailboxSnapshot, src_snapshot: MailboxSnapshot) -> ConsistencyResult:
        src, dest = src_snapshot.chain_id, dest_snapshot.chain_id

        bad_root = self._check_snapshots(dest_snapshot, src_snapshot)
        if bad_root is not None:
            return bad_root

        if dest_snapshot.block_height != src_snapshot.block_height:
            return self._fail(
                src,
                dest,
                "snapshots taken at different block heights",
                src_block=src_snapshot.block_height,
                dest_block=dest_snapshot.block_height,
            )

        inbox = dest_snapshot.inbox_digests.get(src, ZERO_DIGEST)
        outbox = src_snapshot.outbox_digests.get(dest, ZERO_DIGEST)
        meta = {"block": dest_snapshot.block_height, "inbox_digest": inbox, "outbox_digest": outbox}

        if inbox != outbox:
            return self._fail(src, dest, "inbox digest differs from source outbox digest", **meta)

        return ConsistencyResult(
            consistent=True,
            mode=self.mode,
            src_chain_id=src,
            dest_chain_id=dest,
            metadata=meta,
        )


class AsyncConsistencyChecker(ConsistencyChecker):
    """
    The set of (key, payload) entries accumulated into inboxDigest_i[j]
    must be a subset of those accumulated into outboxDigest_j[i].

    Steps:
      1. Both snapshot roots verify.
      2. The claimed inbox entries replay to inboxDigest_i[j] (so the
         checker reasons about exactly what the inbox committed to).
      3. Each entry has an inclusion proof whose leaf is the entry's own
         leaf and which verifies against outboxDigest_j[i] alone.
      4. No two entries are justified by the same outbox position.

    The outbox sequence is never replayed; each proof is O(log n).
    """

    mode = MailboxMode.ASYNC

    def check(
        self,
        dest_snapshot: MailboxSnapshot,
        src_snapshot: MailboxSnapshot,
        entries: Sequence[AccumulatorEntry],
        witness: SubsetWitness,
    ) -> ConsistencyResult:
        src, dest = src_snapshot.chain_id, dest_snapshot.chain_id

        bad_root = self._check_snapshots(dest_snapshot, src_snapshot)
        if bad_root is not None:
            return bad_root

        inbox = dest_snapshot.inbox_digests.get(src, ZERO_DIGEST)
        outbox = src_snapshot.outbox_digests.get(dest, ZERO_DIGEST)

        replayed = replay_value(entries)
        if replayed != inbox:
            return self._fail(
                src, dest, "inbox entries do not reproduce the inbox digest",
                inbox_digest=inbox, replayed=replayed,
            )

        used_positions: Dict[int, MetadataDigest] = {}
        unproven: List[MetadataDigest] = []
        for entry in entries:
            proof = witness.proofs.get(entry.key)
            if proof is None:
                unproven.append(entry.key)
                continue
            if proof.leaf != hash_leaf(entry.key, entry.payload_hash):
                unproven.append(entry.key)
                continue
            if not verify_inclusion(proof, outbox):
                unproven.append(entry.key)
                continue
            if proof.index in used_positions:
                unproven.append(entry.key)
                continue
            used_positions[proof.index] = entry.key

        meta = {"inbox_digest": inbox, "outbox_digest": outbox, "entries": len(entries)}
        if unproven:
            return self._fail(
                src, dest, "inbox entries not contained in source outbox",
                unproven=unproven, **meta,
            )

        return ConsistencyResult(
            consistent=True,
            mode=self.mode,
            src_chain_id=src,
            dest_chain_id=dest,
            metadata=meta,
        )
