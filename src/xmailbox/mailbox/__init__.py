from xmailbox.mailbox.asynchronous import AsyncMailbox
from xmailbox.mailbox.base import Mailbox
from xmailbox.mailbox.factory import make_auth_policy, make_mailbox
from xmailbox.mailbox.sync import SyncMailbox

__all__ = ["AsyncMailbox", "Mailbox", "SyncMailbox", "make_auth_policy", "make_mailbox"]
