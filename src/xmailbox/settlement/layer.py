from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from pydantic import BaseModel, Field

from xmailbox.core.enums import MailboxMode
from xmailbox.core.models import AccumulatorEntry
from xmailbox.mailbox.asynchronous import AsyncMailbox
from xmailbox.mailbox.base import Mailbox
from xmailbox.settlement.checker import (
    AsyncConsistencyChecker,
    ConsistencyResult,
    SubsetWitness,
    SyncConsistencyChecker,
)

logger = logging.getLogger(__name__)


def build_subset_witness(
    src_mailbox: AsyncMailbox,
    dest_chain_id: int,
    entries: Sequence[AccumulatorEntry],
) -> SubsetWitness:
    """
    Prover side: ask the source outbox for an inclusion proof of every
    inbox entry. Entries the source never sent end up in `missing` and
    will fail the subset check.
    """
    witness = SubsetWitness()
    for entry in entries:
        proof = src_mailbox.outbox_proof(dest_chain_id, entry.key)
        if proof is None:
            witness.missing.append(entry.key)
        else:
            witness.proofs[entry.key] = proof
    return witness


class SettlementReport(BaseModel):
    """
    Outcome of one settlement round over every ordered chain pair.

      settled:  True iff every pair is consistent
      results:  one ConsistencyResult per ordered (src, dest) pair,
                including src == dest for chains messaging themselves
    """

    mode: MailboxMode
    block_height: int
    results: List[ConsistencyResult] = Field(default_factory=list)

    @property
    def settled(self) -> bool:
        return all(r.consistent for r in self.results)

    @property
    def faults(self) -> List[ConsistencyResult]:
        return [r for r in self.results if not r.consistent]


class SettlementLayer:
    """
    External verifier reconciling the mailboxes of a set of chains.

    The settlement layer does not decide anything about individual
    messages. It only reads digest snapshots (and, in async mode, inbox
    entries plus outbox inclusion proofs) and runs the mode's checker for
    every ordered pair (src, dest), self-pairs included:

        sync:   inboxDigest_dest[src] == outboxDigest_src[dest]
        async:  entries(inboxDigest_dest[src]) ⊆ entries(outboxDigest_src[dest])

    Faults are reported in the SettlementReport and logged; detection and
    remediation belong to the caller.
    """

    def __init__(self, mode: MailboxMode) -> None:
        self.mode = mode
        self._mailboxes: Dict[int, Mailbox] = {}
        self._sync_checker = SyncConsistencyChecker()
        self._async_checker = AsyncConsistencyChecker()

    def register(self, mailbox: Mailbox) -> None:
        if mailbox.mode != self.mode:
            raise ValueError(
                f"Mailbox of chain {mailbox.chain_id} runs in {mailbox.mode.value} mode, "
                f"settlement expects {self.mode.value}"
            )
        if mailbox.chain_id in self._mailboxes:
            raise ValueError(f"Chain {mailbox.chain_id} already registered")
        self._mailboxes[mailbox.chain_id] = mailbox

    @property
    def chain_ids(self) -> List[int]:
        return sorted(self._mailboxes)

    def check_pair(self, src_chain_id: int, dest_chain_id: int) -> ConsistencyResult:
        src = self._mailboxes[src_chain_id]
        dest = self._mailboxes[dest_chain_id]

        if self.mode == MailboxMode.SYNC:
            return self._sync_checker.check(dest.snapshot(), src.snapshot())

        if not isinstance(src, AsyncMailbox) or not isinstance(dest, AsyncMailbox):
            raise TypeError("async settlement needs mailboxes that serve subset witnesses")
        entries = dest.inbox_entries(src_chain_id)
        witness = build_subset_witness(src, dest_chain_id, entries)
        return self._async_checker.check(dest.snapshot(), src.snapshot(), entries, witness)

    def settle(self) -> SettlementReport:
        heights = [mb.current_block for mb in self._mailboxes.values()]
        report = SettlementReport(mode=self.mode, block_height=max(heights, default=0))

        for src_id in self.chain_ids:
            for dest_id in self.chain_ids:
                result = self.check_pair(src_id, dest_id)
                report.results.append(result)
                if not result.consistent:
                    logger.warning(
                        "settlement fault %d -> %d at block %d: %s",
                        src_id, dest_id, report.block_height, result.reason,
                    )

        logger.info(
            "settlement round at block %d: %d pairs, %d faults",
            report.block_height, len(report.results), len(report.faults),
        )
        return report
