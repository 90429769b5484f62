# src/xmailbox/experiments/network.py
from __future__ import annotations

import hashlib
from typing import Dict, Optional

from xmailbox.core.config import NetworkConfig
from xmailbox.core.enums import MailboxMode
from xmailbox.core.models import Metadata
from xmailbox.mailbox.base import Mailbox
from xmailbox.mailbox.factory import make_mailbox
from xmailbox.relay.coordinator import Coordinator, RelayReport
from xmailbox.settlement.layer import SettlementLayer, SettlementReport


def address_for(chain_id: int, name: str) -> bytes:
    """Deterministic 32-byte application address used in simulations."""
    return hashlib.sha256(f"{chain_id}:{name}".encode("utf-8")).digest()


class SimulationNetwork:
    """
    Minimal in-memory simulation of a set of chains sharing one mailbox
    protocol.

    This is *not* a consensus model. It only wires together:
        - one mailbox per configured chain (via make_mailbox),
        - a Coordinator that relays outbox events between them,
        - a SettlementLayer that checks every ordered pair,
        - a shared block height, advanced explicitly.

    In sync mode all chains move to the next block together, which is the
    setting in which synchronous composition is meaningful.
    """

    def __init__(self, config: NetworkConfig, *, entropy: Optional[bytes] = None) -> None:
        self.config = config
        self.mode: MailboxMode = config.mode
        self.mailboxes: Dict[int, Mailbox] = {
            cfg.chain_id: make_mailbox(cfg, entropy=entropy) for cfg in config.mailboxes
        }
        self.coordinator = Coordinator(self.mailboxes.values(), credentials=config.relayer)
        self.settlement = SettlementLayer(self.mode)
        for mb in self.mailboxes.values():
            self.settlement.register(mb)
        self.height = max((cfg.start_block for cfg in config.mailboxes), default=0)

    def mailbox(self, chain_id: int) -> Mailbox:
        mb = self.mailboxes.get(chain_id)
        if mb is None:
            raise KeyError(f"No mailbox for chain {chain_id}")
        return mb

    def advance_block(self) -> int:
        self.height += 1
        for mb in self.mailboxes.values():
            mb.begin_block(self.height)
        return self.height

    def make_metadata(
        self,
        src_chain_id: int,
        dest_chain_id: int,
        *,
        sender: str = "app",
        recipient: str = "app",
        session_id: Optional[int] = None,
        nonce: int = 0,
    ) -> Metadata:
        """Metadata between two simulated apps; session_id drawn from the source mailbox if omitted."""
        if session_id is None:
            session_id = self.mailbox(src_chain_id).rand_session_id()
        return Metadata(
            src_chain_id=src_chain_id,
            dest_chain_id=dest_chain_id,
            src_address=address_for(src_chain_id, sender),
            dest_address=address_for(dest_chain_id, recipient),
            session_id=session_id,
            nonce=nonce,
        )

    def send(self, metadata: Metadata, payload: bytes) -> None:
        """send() on the source chain, called by the app owning src_address."""
        self.mailbox(metadata.src_chain_id).send(metadata, payload, caller=metadata.src_address)

    def relay(self) -> RelayReport:
        return self.coordinator.relay(block_height=self.height)

    def settle(self) -> SettlementReport:
        return self.settlement.settle()
