"""Chunked payload store — staging area for response bodies too large for one call.

The relayer writes a body as a sequence of chunks: the first replaces whatever
is staged, the rest append. Ordering is the caller's responsibility.

A staged body is kept as a tuple of its chunks and joined only when read, so
appending never copies the bytes already staged and store snapshots stay
shallow.
"""

from __future__ import annotations

from fetchbridge.ledger.store import LedgerStore


class PayloadStore:
    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def store_chunk(self, request_id: int, data: bytes, append: bool) -> int:
        """Stage ``data`` for a request and return the staged length."""
        current = self._store.response_bodies.get(request_id, ()) if append else ()
        staged = current + (bytes(data),)
        self._store.response_bodies[request_id] = staged
        return sum(len(chunk) for chunk in staged)

    def put(self, request_id: int, body: bytes) -> None:
        """Finalise an inline body, overriding anything staged."""
        self._store.response_bodies[request_id] = (bytes(body),)

    def get(self, request_id: int) -> bytes | None:
        chunks = self._store.response_bodies.get(request_id)
        return None if chunks is None else b"".join(chunks)

    def has_body(self, request_id: int) -> bool:
        return any(self._store.response_bodies.get(request_id, ()))

    def discard(self, request_id: int) -> bytes | None:
        chunks = self._store.response_bodies.pop(request_id, None)
        return None if chunks is None else b"".join(chunks)
