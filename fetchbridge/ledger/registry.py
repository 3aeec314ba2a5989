"""Request registry — the table of pending fetch requests.

Ids come from a checked u64 counter: strictly increasing, never reused.
"""

from __future__ import annotations

import logging

from fetchbridge.errors import Overflow
from fetchbridge.ledger.store import LedgerStore, StoredRequest
from fetchbridge.schemas import U64_MAX, PendingRequest

logger = logging.getLogger(__name__)


class RequestRegistry:
    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def allocate_id(self) -> int:
        """Return the next request id and advance the counter.

        Raises Overflow (without advancing) when the counter would wrap.
        """
        request_id = self._store.next_request_id
        if request_id >= U64_MAX:
            raise Overflow("Request id overflow")
        self._store.next_request_id = request_id + 1
        return request_id

    def insert(self, request_id: int, request: StoredRequest) -> None:
        self._store.requests[request_id] = request

    def get(self, request_id: int) -> StoredRequest | None:
        return self._store.requests.get(request_id)

    def pop(self, request_id: int) -> StoredRequest | None:
        return self._store.requests.pop(request_id, None)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._store.requests

    def __len__(self) -> int:
        return len(self._store.requests)

    def list(self) -> list[PendingRequest]:
        """Snapshot of every pending request, ordered by id."""
        return [
            PendingRequest(
                request_id=request_id,
                url=req.url,
                caller=req.caller,
                context=req.context,
                continuation_token=req.continuation_token,
            )
            for request_id, req in sorted(self._store.requests.items())
        ]
