# src/xmailbox/experiments/__init__.py
from __future__ import annotations

from typing import Optional

from xmailbox.core.config import AuthConfig, MailboxConfig, NetworkConfig, RelayerCredentials
from xmailbox.core.enums import AuthPolicyKind, MailboxMode
from xmailbox.experiments.network import SimulationNetwork, address_for
from xmailbox.experiments.relay_scenarios import SCENARIOS
from xmailbox.experiments.scenarios_base import Label, RelayScenario, ScenarioId, ScenarioSample

# ---------------------------------------------------------------------
# 1) Default relayer identity (for hmac_relayer populate policies)
# ---------------------------------------------------------------------

DEFAULT_RELAYER_ID = "relayer-1"
DEFAULT_RELAYER_SECRET = b"super-secret-relayer-key".hex()

DEFAULT_CHAIN_IDS = (1, 2, 3)


# ---------------------------------------------------------------------
# 2) Default experimental network for a given mode
# ---------------------------------------------------------------------

def make_network_config(mode: MailboxMode, *, signed: bool = True) -> NetworkConfig:
    """
    Three chains (1, 2, 3) running the same mailbox mode.

    With signed=True every mailbox only accepts batches signed by
    DEFAULT_RELAYER_ID and the coordinator holds the matching secret.
    """
    if signed:
        auth = AuthConfig(
            kind=AuthPolicyKind.HMAC_RELAYER,
            relayers={DEFAULT_RELAYER_ID: DEFAULT_RELAYER_SECRET},
        )
        relayer: Optional[RelayerCredentials] = RelayerCredentials(
            relayer_id=DEFAULT_RELAYER_ID,
            secret=DEFAULT_RELAYER_SECRET,
        )
    else:
        auth = AuthConfig()
        relayer = None

    return NetworkConfig(
        mailboxes=[MailboxConfig(chain_id=cid, mode=mode, auth=auth) for cid in DEFAULT_CHAIN_IDS],
        relayer=relayer,
    )


def make_network(mode: MailboxMode, *, signed: bool = True, entropy: Optional[bytes] = None) -> SimulationNetwork:
    return SimulationNetwork(make_network_config(mode, signed=signed), entropy=entropy)


__all__ = [
    "DEFAULT_RELAYER_ID",
    "DEFAULT_RELAYER_SECRET",
    "Label",
    "RelayScenario",
    "SCENARIOS",
    "ScenarioId",
    "ScenarioSample",
    "SimulationNetwork",
    "address_for",
    "make_network",
    "make_network_config",
]
