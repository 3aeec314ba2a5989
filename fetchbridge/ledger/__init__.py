"""Ledger side of the bridge — registry, payload staging and the continuation host.

``Ledger`` is the entry point; the other classes are its collaborators and
are exported for tests and embedding.
"""

from fetchbridge.ledger.coordinator import ContinuationCoordinator
from fetchbridge.ledger.host import Continuation, ContinuationHost, Outcome
from fetchbridge.ledger.payloads import PayloadStore
from fetchbridge.ledger.registry import RequestRegistry
from fetchbridge.ledger.runtime import Ledger
from fetchbridge.ledger.store import LedgerStore, StoredRequest

__all__ = [
    "Continuation",
    "ContinuationCoordinator",
    "ContinuationHost",
    "Ledger",
    "LedgerStore",
    "Outcome",
    "PayloadStore",
    "RequestRegistry",
    "StoredRequest",
]
