"""
Relay scenarios for the mailbox protocol.

Every scenario uses two chains of the simulated network:

    SRC = 1   (the sending chain)
    DST = 2   (the receiving chain)

and a fresh SimulationNetwork per run. Faulty relays are modelled by
draining the coordinator's view of the outbox (collect) and handing a
modified batch to deliver(), so the batch still carries a valid relayer
witness: the relayer is compromised, not the transport.

Expected detection:

    TAMPERED_PAYLOAD  -> settlement (both modes)
    FORGED_MESSAGE    -> settlement (both modes)
    DROPPED_MESSAGE   -> settlement in sync mode; allowed in async mode
    REORDERED_BATCH   -> settlement in sync mode; allowed in async mode
    DUPLICATE_REPLAY  -> DuplicateKey, or settlement after a sync reset
    UNSIGNED_BATCH    -> AuthenticationFailed under a relayer policy
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from xmailbox.core.enums import AuthPolicyKind, ErrorKind, MailboxMode
from xmailbox.core.errors import MailboxError
from xmailbox.core.models import Message
from xmailbox.experiments.network import SimulationNetwork
from xmailbox.experiments.scenarios_base import (
    Label,
    RelayScenario,
    ScenarioId,
    ScenarioSample,
    sample_from_relay,
    sample_from_settlement,
)
from xmailbox.relay.coordinator import RelayReport

SRC = 1
DST = 2


def _attempt(op: Callable[[], object]) -> Optional[ErrorKind]:
    """Run a mailbox operation, returning the error kind it failed with, if any."""
    try:
        op()
    except MailboxError as exc:
        return exc.kind
    return None


def _deliver(network: SimulationNetwork, messages: List[Message]) -> RelayReport:
    report = RelayReport(block_height=network.height)
    network.coordinator.deliver(DST, messages, block_height=network.height, report=report)
    return report


class HonestRelayScenario(RelayScenario):
    scenario_id = ScenarioId.HONEST
    description = """
    HONEST: two messages SRC -> DST and one DST -> SRC, relayed unchanged.
    Every recv returns the original payload and settlement is consistent.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        m1 = network.make_metadata(SRC, DST)
        m2 = network.make_metadata(SRC, DST, nonce=1)
        back = network.make_metadata(DST, SRC)
        network.send(m1, b"hello")
        network.send(m2, b"world")
        network.send(back, b"ack")

        network.relay()
        received = [
            network.mailbox(DST).recv(m1),
            network.mailbox(DST).recv(m2),
            network.mailbox(SRC).recv(back),
        ]

        sample = sample_from_settlement(Label.SAFE, "honest relay", network.settle())
        sample.detail["received"] = [p.decode("utf-8") for p in received]
        return [sample]


class TamperedPayloadScenario(RelayScenario):
    scenario_id = ScenarioId.TAMPERED_PAYLOAD
    description = """
    TAMPERED_PAYLOAD: the relayer keeps the metadata but swaps the payload.
    recv on DST happily returns the forged payload (the key only covers
    metadata); settlement must flag the pair SRC -> DST.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        meta = network.make_metadata(SRC, DST)
        network.send(meta, b"amount=100")

        network.coordinator.collect()
        _deliver(network, [Message(metadata=meta, payload=b"amount=1000000")])
        observed = network.mailbox(DST).recv(meta)

        sample = sample_from_settlement(Label.FAULT, "payload swapped in transit", network.settle())
        sample.detail["received"] = observed.decode("utf-8")
        return [sample]


class ForgedMessageScenario(RelayScenario):
    scenario_id = ScenarioId.FORGED_MESSAGE
    description = """
    FORGED_MESSAGE: next to a genuine message, the relayer populates one
    that SRC never sent.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        genuine = network.make_metadata(SRC, DST)
        network.send(genuine, b"genuine")
        forged = network.make_metadata(SRC, DST, sender="mallory", session_id=7)

        network.coordinator.collect()
        _deliver(
            network,
            [
                Message(metadata=genuine, payload=b"genuine"),
                Message(metadata=forged, payload=b"mint 1000000"),
            ],
        )
        return [sample_from_settlement(Label.FAULT, "message never sent by SRC", network.settle())]


class DroppedMessageScenario(RelayScenario):
    scenario_id = ScenarioId.DROPPED_MESSAGE
    description = """
    DROPPED_MESSAGE: of two sent messages only the first is relayed.
    Sync: inbox and outbox digests of the block differ -> fault.
    Async: the inbox is still a subset of the outbox -> consistent; the
    withheld message can be delivered in a later block and is then
    readable.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        m1 = network.make_metadata(SRC, DST)
        m2 = network.make_metadata(SRC, DST, nonce=1)
        network.send(m1, b"first")
        network.send(m2, b"second")

        network.coordinator.collect()
        _deliver(network, [Message(metadata=m1, payload=b"first")])

        label = self.expected_fault(network, sync=True, asynchronous=False)
        samples = [sample_from_settlement(label, "second message withheld", network.settle())]

        if network.mode == MailboxMode.ASYNC:
            network.advance_block()
            _deliver(network, [Message(metadata=m2, payload=b"second")])
            late = sample_from_settlement(Label.SAFE, "withheld message delivered late", network.settle())
            late.detail["received"] = network.mailbox(DST).recv(m2).decode("utf-8")
            samples.append(late)

        return samples


class ReorderedBatchScenario(RelayScenario):
    scenario_id = ScenarioId.REORDERED_BATCH
    description = """
    REORDERED_BATCH: both messages are relayed, in reverse order.
    The chained digest is order-sensitive, so sync settlement fails; async
    settlement compares sets and accepts.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        m1 = network.make_metadata(SRC, DST)
        m2 = network.make_metadata(SRC, DST, nonce=1)
        network.send(m1, b"first")
        network.send(m2, b"second")

        network.coordinator.collect()
        _deliver(
            network,
            [Message(metadata=m2, payload=b"second"), Message(metadata=m1, payload=b"first")],
        )

        label = self.expected_fault(network, sync=True, asynchronous=False)
        return [sample_from_settlement(label, "batch delivered in reverse order", network.settle())]


class DuplicateReplayScenario(RelayScenario):
    scenario_id = ScenarioId.DUPLICATE_REPLAY
    description = """
    DUPLICATE_REPLAY: the relayer submits a batch containing one message
    twice (rejected with DuplicateKey), then delivers it honestly, then
    replays it in the next block.
    Async: the replay hits the persistent inbox nullifier -> DuplicateKey.
    Sync: the new block starts from an empty inbox, so the replay is
    written, but the source outbox of that block is empty -> settlement
    fault.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        meta = network.make_metadata(SRC, DST)
        network.send(meta, b"once")
        msg = Message(metadata=meta, payload=b"once")

        network.coordinator.collect()
        samples = [sample_from_relay(Label.FAULT, "same key twice in one batch", _deliver(network, [msg, msg]))]

        _deliver(network, [msg])
        samples.append(sample_from_settlement(Label.SAFE, "single honest delivery", network.settle()))

        network.advance_block()
        replay = _deliver(network, [msg])
        if network.mode == MailboxMode.ASYNC:
            samples.append(sample_from_relay(Label.FAULT, "replay in a later block", replay))
        else:
            samples.append(sample_from_settlement(Label.FAULT, "replay in a later block", network.settle()))
        return samples


class UnsignedBatchScenario(RelayScenario):
    scenario_id = ScenarioId.UNSIGNED_BATCH
    description = """
    UNSIGNED_BATCH: a batch is submitted without a relayer witness, then
    the same batch is relayed by the registered relayer.
    """

    def run(self, network: SimulationNetwork) -> List[ScenarioSample]:
        network.advance_block()
        meta = network.make_metadata(SRC, DST)
        network.send(meta, b"signed only")
        msg = Message(metadata=meta, payload=b"signed only")

        dst_cfg = next(cfg for cfg in network.config.mailboxes if cfg.chain_id == DST)
        label = Label.FAULT if dst_cfg.auth.kind == AuthPolicyKind.HMAC_RELAYER else Label.SAFE

        error = _attempt(
            lambda: network.mailbox(DST).populate_inbox([msg], b"", block_height=network.height)
        )
        samples = [ScenarioSample(label=label, description="populate without witness", error=error)]

        if error is not None:
            network.relay()
            samples.append(sample_from_settlement(Label.SAFE, "signed relay afterwards", network.settle()))
        return samples


SCENARIOS: Dict[ScenarioId, RelayScenario] = {
    ScenarioId.HONEST:           HonestRelayScenario(),
    ScenarioId.TAMPERED_PAYLOAD: TamperedPayloadScenario(),
    ScenarioId.FORGED_MESSAGE:   ForgedMessageScenario(),
    ScenarioId.DROPPED_MESSAGE:  DroppedMessageScenario(),
    ScenarioId.REORDERED_BATCH:  ReorderedBatchScenario(),
    ScenarioId.DUPLICATE_REPLAY: DuplicateReplayScenario(),
    ScenarioId.UNSIGNED_BATCH:   UnsignedBatchScenario(),
}
