"""Indexer-to-cache synchronization: upsert engine, ledger and poller."""

from chainsync.sync.poller import Poller, PollResult
from chainsync.sync.upsert import BatchResult, UpsertEngine, WriteOutcome

__all__ = [
    "BatchResult",
    "Poller",
    "PollResult",
    "UpsertEngine",
    "WriteOutcome",
]
