# src/xmailbox/experiments/scenarios_base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from xmailbox.core.enums import ErrorKind, MailboxMode
from xmailbox.experiments.network import SimulationNetwork
from xmailbox.relay.coordinator import RelayReport
from xmailbox.settlement.layer import SettlementReport


class ScenarioId(str, Enum):
    """
    Canonical relay behaviours exercised against the mailbox protocol.

      - HONEST:
          Every sent message is relayed once, in order, untouched.

      - TAMPERED_PAYLOAD:
          The relayer keeps the metadata of a sent message but swaps its
          payload. The inbox key is unchanged, so only settlement can see it.

      - FORGED_MESSAGE:
          The relayer populates a message the source chain never sent.

      - DROPPED_MESSAGE:
          The relayer withholds part of the outbox. A fault for synchronous
          mailboxes (digests must match per block); merely a delay for
          asynchronous ones (the inbox stays a subset).

      - REORDERED_BATCH:
          The relayer delivers the right messages in a different order.
          Breaks equality of order-sensitive digests in sync mode; the
          subset relation of async mode is order-free.

      - DUPLICATE_REPLAY:
          The relayer tries to write one metadata digest twice. Rejected by
          the inbox nullifier with DuplicateKey.

      - UNSIGNED_BATCH:
          A batch without a valid relayer witness. Rejected with
          AuthenticationFailed when a relayer policy is configured.
    """

    HONEST = "honest"
    TAMPERED_PAYLOAD = "tampered_payload"
    FORGED_MESSAGE = "forged_message"
    DROPPED_MESSAGE = "dropped_message"
    REORDERED_BATCH = "reordered_batch"
    DUPLICATE_REPLAY = "duplicate_replay"
    UNSIGNED_BATCH = "unsigned_batch"


class Label(str, Enum):
    """
    Ground truth for one sample.

      - SAFE:   the protocol should accept this execution.
      - FAULT:  the protocol should reject it, either through an operation
                error or through a settlement inconsistency.
    """

    SAFE = "safe"
    FAULT = "fault"


class ScenarioSample(BaseModel):
    """One observed step of a scenario, with its expected label."""

    label: Label
    description: str
    settled: Optional[bool] = None
    error: Optional[ErrorKind] = None
    detail: Dict[str, Any] = Field(default_factory=dict)

    @property
    def flagged(self) -> bool:
        """True if the protocol rejected this step in some way."""
        return self.error is not None or self.settled is False

    @property
    def as_expected(self) -> bool:
        return self.flagged == (self.label == Label.FAULT)


def sample_from_settlement(label: Label, description: str, report: SettlementReport) -> ScenarioSample:
    return ScenarioSample(
        label=label,
        description=description,
        settled=report.settled,
        detail={
            "faults": [
                {"src": r.src_chain_id, "dest": r.dest_chain_id, "reason": r.reason}
                for r in report.faults
            ]
        },
    )


def sample_from_relay(label: Label, description: str, report: RelayReport) -> ScenarioSample:
    error = next(iter(report.rejected.values()), None)
    return ScenarioSample(
        label=label,
        description=description,
        error=error,
        detail={"delivered": dict(report.delivered)},
    )


class RelayScenario(ABC):
    """
    Abstract base class for relay scenarios.

    A scenario drives a fresh SimulationNetwork through one behaviour of
    the coordinator (honest or faulty) and records what the mailboxes and
    the settlement layer observed. The *semantics* of the fault live here;
    the mailboxes and checkers only see the resulting operations.
    """

    scenario_id: ScenarioId
    description: str = ""

    @abstractmethod
    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        raise NotImplementedError

    @staticmethod
    def expected_fault(network: SimulationNetwork, *, sync: bool, asynchronous: bool) -> Label:
        """Label that depends on the network's mode."""
        faulty = sync if network.mode == MailboxMode.SYNC else asynchronous
        return Label.FAULT if faulty else Label.SAFE
