from xmailbox.settlement.checker import (
    AsyncConsistencyChecker,
    ConsistencyResult,
    SubsetWitness,
    SyncConsistencyChecker,
)
from xmailbox.settlement.layer import SettlementLayer, SettlementReport, build_subset_witness

__all__ = [
    "AsyncConsistencyChecker",
    "ConsistencyResult",
    "SettlementLayer",
    "SettlementReport",
    "SubsetWitness",
    "SyncConsistencyChecker",
    "build_subset_witness",
]
