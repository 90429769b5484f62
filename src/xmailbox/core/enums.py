# src/xmailbox/core/enums.py
from __future__ import annotations

from enum import Enum


class MailboxMode(str, Enum):
    """
    Lifecycle of the mailbox state.

      SYNC:
          Inbox, outbox, digests and nullifiers are scoped to the current
          block height and logically reset when the next block begins.
          Messages are populated and consumed within the same block.

      ASYNC:
          The same structures persist for the lifetime of the mailbox.
          A populated message may be consumed arbitrarily many blocks later.
    """

    SYNC = "sync"
    ASYNC = "async"


class AccumulatorFamily(str, Enum):
    """
    Incremental commitment used for inbox and outbox digests.

      CHAINED:
          d' = H(d || key || payload). Supports equality comparison only.

      MERKLE:
          Append-only positional Merkle tree. Supports inclusion proofs,
          hence subset checks without replaying the whole sequence.
    """

    CHAINED = "chained"
    MERKLE = "merkle"


class AuthPolicyKind(str, Enum):
    """
    Verification policy applied to the `aux` witness of populate_inbox.
    """

    OPEN = "open"
    HMAC_RELAYER = "hmac_relayer"


class ErrorKind(str, Enum):
    """
    Canonical failure kinds of single mailbox operations.
    """

    WRONG_SOURCE = "WrongSource"
    WRONG_DESTINATION = "WrongDestination"
    DUPLICATE_KEY = "DuplicateKey"
    NOT_FOUND = "NotFound"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    INVALID_BLOCK_TRANSITION = "InvalidBlockTransition"


class Side(str, Enum):
    """Which half of the mailbox a stored slot or digest belongs to."""

    INBOX = "inbox"
    OUTBOX = "outbox"
