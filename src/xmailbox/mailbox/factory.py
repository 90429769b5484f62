from __future__ import annotations

from typing import Optional

from xmailbox.core.config import AuthConfig, MailboxConfig
from xmailbox.core.enums import AuthPolicyKind, MailboxMode
from xmailbox.helper.crypto import (
    HmacRelayerVerifier,
    OpenPopulatePolicy,
    PopulateAuthPolicy,
    RelayerRegistry,
    RelayerSignaturePolicy,
)
from xmailbox.mailbox.asynchronous import AsyncMailbox
from xmailbox.mailbox.base import Mailbox
from xmailbox.mailbox.sync import SyncMailbox


def make_auth_policy(auth: AuthConfig) -> PopulateAuthPolicy:
    """
    Build the populate authorization policy described by `auth`.

    For hmac_relayer, every configured relayer gets an HmacRelayerVerifier
    in a fresh RelayerRegistry.
    """
    if auth.kind == AuthPolicyKind.OPEN:
        return OpenPopulatePolicy()

    registry = RelayerRegistry()
    for relayer_id, secret in auth.relayers.items():
        registry.register(HmacRelayerVerifier(relayer_id, bytes.fromhex(secret)))
    return RelayerSignaturePolicy(registry)


def make_mailbox(config: MailboxConfig, *, entropy: Optional[bytes] = None) -> Mailbox:
    """
    Factory: select the mailbox implementation at deployment time.

      mode=sync   -> SyncMailbox (block-scoped epochs)
      mode=async  -> AsyncMailbox (persistent, Merkle digests)
    """
    policy = make_auth_policy(config.auth)

    if config.mode == MailboxMode.SYNC:
        return SyncMailbox(
            config.chain_id,
            accumulator=config.accumulator,
            auth_policy=policy,
            clear_on_read=config.clear_on_read,
            start_block=config.start_block,
            entropy=entropy,
        )

    return AsyncMailbox(
        config.chain_id,
        auth_policy=policy,
        start_block=config.start_block,
        entropy=entropy,
    )
