from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from xmailbox.core.config import RelayerCredentials
from xmailbox.core.enums import ErrorKind
from xmailbox.core.errors import MailboxError
from xmailbox.core.models import Message
from xmailbox.helper.crypto import sign_populate_batch
from xmailbox.mailbox.base import Mailbox

logger = logging.getLogger(__name__)


class RelayReport(BaseModel):
    """
    Result of one relay round.

      delivered:  dest chain id -> number of messages populated
      rejected:   dest chain id -> error kind of the rejected batch
    """

    block_height: Optional[int] = None
    delivered: Dict[int, int] = Field(default_factory=dict)
    rejected: Dict[int, ErrorKind] = Field(default_factory=dict)


class Coordinator:
    """
    Reference relayer moving messages between mailboxes.

    The coordinator is the only actor that looks at more than one chain.
    Each round it:

      (1) reads the MessageSent events every source mailbox emitted since
          its last cursor;
      (2) groups them by destination, preserving source order and log order;
      (3) signs each batch when relayer credentials are configured;
      (4) calls populate_inbox exactly once per destination.

    A rejected batch is logged and reported; the cursor still moves past it,
    so the coordinator never retries on its own.
    """

    def __init__(
        self,
        mailboxes: Iterable[Mailbox],
        *,
        credentials: Optional[RelayerCredentials] = None,
    ) -> None:
        self._mailboxes: Dict[int, Mailbox] = {mb.chain_id: mb for mb in mailboxes}
        self.credentials = credentials
        self._cursors: Dict[int, int] = {chain_id: 0 for chain_id in self._mailboxes}

    def add_mailbox(self, mailbox: Mailbox) -> None:
        self._mailboxes[mailbox.chain_id] = mailbox
        self._cursors.setdefault(mailbox.chain_id, 0)

    def collect(self) -> Dict[int, List[Message]]:
        """Drain new outbox events into per-destination batches."""
        batches: Dict[int, List[Message]] = {}
        for src_id in sorted(self._mailboxes):
            events = self._mailboxes[src_id].events(self._cursors[src_id])
            for ev in events:
                dest = ev.message.metadata.dest_chain_id
                if dest not in self._mailboxes:
                    logger.warning("chain %d: event %d targets unknown chain %d, skipped", src_id, ev.log_index, dest)
                    continue
                batches.setdefault(dest, []).append(ev.message)
            self._cursors[src_id] += len(events)
        return batches

    def make_witness(self, dest_chain_id: int, messages: List[Message]) -> bytes:
        if self.credentials is None:
            return b""
        return sign_populate_batch(
            self.credentials.relayer_id,
            self.credentials.secret_bytes(),
            dest_chain_id,
            messages,
        )

    def deliver(
        self,
        dest_chain_id: int,
        messages: List[Message],
        *,
        block_height: Optional[int] = None,
        report: Optional[RelayReport] = None,
    ) -> bool:
        """Populate one destination. Returns False if the batch was rejected."""
        report = report if report is not None else RelayReport(block_height=block_height)
        aux = self.make_witness(dest_chain_id, messages)
        try:
            self._mailboxes[dest_chain_id].populate_inbox(messages, aux, block_height=block_height)
        except MailboxError as exc:
            logger.warning("populate of chain %d rejected: %s (%s)", dest_chain_id, exc.kind.value, exc)
            report.rejected[dest_chain_id] = exc.kind
            return False

        report.delivered[dest_chain_id] = len(messages)
        return True

    def relay(self, *, block_height: Optional[int] = None) -> RelayReport:
        report = RelayReport(block_height=block_height)
        for dest, messages in sorted(self.collect().items()):
            self.deliver(dest, messages, block_height=block_height, report=report)

        logger.info(
            "relay round%s: delivered %s, rejected %s",
            "" if block_height is None else f" at block {block_height}",
            report.delivered,
            {k: v.value for k, v in report.rejected.items()},
        )
        return report
