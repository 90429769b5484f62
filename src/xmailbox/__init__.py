"""
Cross-chain Mailbox protocol.

Each chain hosts one Mailbox that owns an inbox (messages populated by a
coordinator) and an outbox (messages sent by local applications). Both sides
are summarized by order-sensitive digest accumulators, and a settlement layer
reconciles the inbox of one chain against the outbox of another.
"""

__version__ = "0.1.0"
