import json

import pytest
from pydantic import ValidationError

from xmailbox.core.config import AuthConfig, MailboxConfig, NetworkConfig, load_network_config
from xmailbox.core.enums import AccumulatorFamily, AuthPolicyKind, MailboxMode
from xmailbox.helper.crypto import RelayerSignaturePolicy
from xmailbox.mailbox import AsyncMailbox, SyncMailbox, make_mailbox


class TestMailboxConfig:

    def test_defaults(self) -> None:
        cfg = MailboxConfig(chain_id=1)
        assert cfg.mode == MailboxMode.ASYNC
        assert cfg.accumulator == AccumulatorFamily.MERKLE
        assert cfg.auth.kind == AuthPolicyKind.OPEN

    def test_sync_defaults_to_chained(self) -> None:
        assert MailboxConfig(chain_id=1, mode="sync").accumulator == AccumulatorFamily.CHAINED
        assert MailboxConfig(chain_id=1, mode="sync", accumulator="merkle").accumulator == AccumulatorFamily.MERKLE

    @pytest.mark.parametrize(
        "fields",
        [
            {"chain_id": -1},
            {"chain_id": 2**32},
            {"chain_id": 1, "mode": "async", "accumulator": "chained"},
            {"chain_id": 1, "mode": "async", "clear_on_read": True},
            {"chain_id": 1, "mode": "eventual"},
        ],
    )
    def test_invalid(self, fields) -> None:
        with pytest.raises(ValidationError):
            MailboxConfig(**fields)

    def test_auth_needs_relayers(self) -> None:
        with pytest.raises(ValidationError):
            AuthConfig(kind="hmac_relayer")
        with pytest.raises(ValidationError):
            AuthConfig(kind="hmac_relayer", relayers={"r1": "not-hex"})


class TestNetworkConfig:

    def test_duplicate_chain(self) -> None:
        with pytest.raises(ValidationError):
            NetworkConfig(mailboxes=[{"chain_id": 1}, {"chain_id": 1}])

    def test_mixed_modes(self) -> None:
        with pytest.raises(ValidationError):
            NetworkConfig(mailboxes=[{"chain_id": 1, "mode": "sync"}, {"chain_id": 2, "mode": "async"}])

    def test_load_from_file(self, tmp_path) -> None:
        data = {
            "mailboxes": [
                {
                    "chain_id": 10,
                    "mode": "sync",
                    "clear_on_read": True,
                    "auth": {"kind": "hmac_relayer", "relayers": {"r1": "abcd"}},
                },
                {"chain_id": 11, "mode": "sync", "start_block": 5},
            ],
            "relayer": {"relayer_id": "r1", "secret": "abcd"},
        }
        path = tmp_path / "network.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        cfg = load_network_config(path)
        assert cfg.mode == MailboxMode.SYNC
        assert [m.chain_id for m in cfg.mailboxes] == [10, 11]
        assert cfg.relayer.secret_bytes() == b"\xab\xcd"
        assert load_network_config(data) == cfg


class TestFactory:

    def test_sync(self) -> None:
        cfg = MailboxConfig(
            chain_id=10,
            mode="sync",
            clear_on_read=True,
            start_block=5,
            auth={"kind": "hmac_relayer", "relayers": {"r1": "abcd"}},
        )
        mb = make_mailbox(cfg)
        assert isinstance(mb, SyncMailbox)
        assert mb.chain_id == 10
        assert mb.current_block == 5
        assert mb.clear_on_read
        assert isinstance(mb.auth_policy, RelayerSignaturePolicy)

    def test_async(self) -> None:
        mb = make_mailbox(MailboxConfig(chain_id=11, start_block=3))
        assert isinstance(mb, AsyncMailbox)
        assert mb.current_block == 3
        assert mb.mode == MailboxMode.ASYNC
