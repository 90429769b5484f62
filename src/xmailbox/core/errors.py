# src/xmailbox/core/errors.py
from __future__ import annotations

from typing import Optional

from xmailbox.core.enums import ErrorKind


class MailboxError(Exception):
    """
    Base class for local, synchronous failures of a mailbox operation.

    A failed operation leaves the mailbox untouched. Nothing is retried
    internally; callers decide whether to resubmit with corrected input.
    """

    kind: ErrorKind

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class WrongSource(MailboxError):
    """send() called with a foreign src_chain_id or by a caller not owning src_address."""

    kind = ErrorKind.WRONG_SOURCE


class WrongDestination(MailboxError):
    """populate_inbox() or recv() targeting another chain."""

    kind = ErrorKind.WRONG_DESTINATION


class DuplicateKey(MailboxError):
    """A nullifier already marks this metadata digest in the current epoch."""

    kind = ErrorKind.DUPLICATE_KEY


class NotFound(MailboxError):
    """recv() on a key that was never populated, or was populated in a reset block."""

    kind = ErrorKind.NOT_FOUND


class AuthenticationFailed(MailboxError):
    """The populate authorization policy rejected the aux witness."""

    kind = ErrorKind.AUTHENTICATION_FAILED


class InvalidBlockTransition(MailboxError):
    """Synchronous mailbox asked to go back in height or to populate twice in one block."""

    kind = ErrorKind.INVALID_BLOCK_TRANSITION
