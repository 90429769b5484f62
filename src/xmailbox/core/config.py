from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from xmailbox.core.enums import AccumulatorFamily, AuthPolicyKind, MailboxMode
from xmailbox.core.models import U32_MAX


class AuthConfig(BaseModel):
    """
    Populate authorization policy of one mailbox.

      kind=open           any aux witness is accepted
      kind=hmac_relayer   aux must be signed by one of `relayers`
                          (relayer_id -> hex-encoded HMAC secret)
    """

    kind: AuthPolicyKind = AuthPolicyKind.OPEN
    relayers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("relayers")
    @classmethod
    def _check_secrets(cls, v: Dict[str, str]) -> Dict[str, str]:
        for relayer_id, secret in v.items():
            try:
                bytes.fromhex(secret)
            except ValueError as exc:
                raise ValueError(f"Relayer {relayer_id!r}: secret is not valid hex") from exc
        return v

    @model_validator(mode="after")
    def _check_relayers_present(self) -> "AuthConfig":
        if self.kind == AuthPolicyKind.HMAC_RELAYER and not self.relayers:
            raise ValueError("hmac_relayer policy needs at least one relayer secret")
        return self


class MailboxConfig(BaseModel):
    """
    Deployment-time configuration of one mailbox.

    The implementation (synchronous or asynchronous) and the accumulator
    family are selected here, not inferred later.
    """

    chain_id: int = Field(..., ge=0, le=U32_MAX, description="Host chain id, fixed for the mailbox lifetime.")
    mode: MailboxMode = MailboxMode.ASYNC
    accumulator: Optional[AccumulatorFamily] = Field(
        default=None,
        description="Defaults to chained for sync and merkle for async.",
    )
    auth: AuthConfig = Field(default_factory=AuthConfig)
    clear_on_read: bool = Field(
        default=False,
        description="Sync only: drop the payload after recv (the nullifier mark stays).",
    )
    start_block: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _resolve_accumulator(self) -> "MailboxConfig":
        if self.accumulator is None:
            self.accumulator = (
                AccumulatorFamily.CHAINED if self.mode == MailboxMode.SYNC else AccumulatorFamily.MERKLE
            )
        if self.mode == MailboxMode.ASYNC and self.accumulator != AccumulatorFamily.MERKLE:
            raise ValueError("async mailboxes need a subset-provable accumulator (merkle)")
        if self.mode == MailboxMode.ASYNC and self.clear_on_read:
            raise ValueError("clear_on_read is only valid for sync mailboxes")
        return self


class RelayerCredentials(BaseModel):
    """Signing identity used by the coordinator."""

    relayer_id: str
    secret: str = Field(..., description="Hex-encoded HMAC secret.")

    def secret_bytes(self) -> bytes:
        return bytes.fromhex(self.secret)


class NetworkConfig(BaseModel):
    """A set of mailboxes, one per chain, plus optional relayer credentials."""

    mailboxes: List[MailboxConfig]
    relayer: Optional[RelayerCredentials] = None

    @field_validator("mailboxes")
    @classmethod
    def _unique_chains(cls, v: List[MailboxConfig]) -> List[MailboxConfig]:
        seen = set()
        for cfg in v:
            if cfg.chain_id in seen:
                raise ValueError(f"Duplicate chain id {cfg.chain_id}")
            seen.add(cfg.chain_id)
        return v

    @model_validator(mode="after")
    def _single_mode(self) -> "NetworkConfig":
        modes = {cfg.mode for cfg in self.mailboxes}
        if len(modes) > 1:
            raise ValueError("All mailboxes of a network must share one mode")
        return self

    @property
    def mode(self) -> MailboxMode:
        return self.mailboxes[0].mode if self.mailboxes else MailboxMode.ASYNC


def load_network_config(source: Union[str, Path, dict]) -> NetworkConfig:
    """
    Load a NetworkConfig from a JSON file path or an already-parsed dict.

    Raises pydantic.ValidationError on invalid content.
    """
    if isinstance(source, dict):
        return NetworkConfig.model_validate(source)
    with open(source, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return NetworkConfig.model_validate(data)
