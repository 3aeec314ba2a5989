"""Off-ledger relay worker."""

from fetchbridge.relayer.client import LedgerClient
from fetchbridge.relayer.worker import RelayWorker, split_chunks

__all__ = ["LedgerClient", "RelayWorker", "split_chunks"]
