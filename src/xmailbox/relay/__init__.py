from xmailbox.relay.coordinator import Coordinator, RelayReport

__all__ = ["Coordinator", "RelayReport"]
