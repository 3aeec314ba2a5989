"""Ledger state — the request counter plus the requests and staged-bodies tables.

Only the registry and the payload store write to these tables. Stored values
are immutable, so a snapshot is a shallow copy and rolling back a failed
call is a cheap restore.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StoredRequest:
    continuation_token: bytes
    url: str
    caller: str
    context: bytes | None = None


@dataclass(frozen=True)
class Snapshot:
    next_request_id: int
    requests: dict[int, StoredRequest]
    response_bodies: dict[int, tuple[bytes, ...]]


@dataclass
class LedgerStore:
    next_request_id: int = 0
    requests: dict[int, StoredRequest] = field(default_factory=dict)
    response_bodies: dict[int, tuple[bytes, ...]] = field(default_factory=dict)

    def snapshot(self) -> Snapshot:
        return Snapshot(
            next_request_id=self.next_request_id,
            requests=dict(self.requests),
            response_bodies=dict(self.response_bodies),
        )

    def restore(self, snapshot: Snapshot) -> None:
        self.next_request_id = snapshot.next_request_id
        self.requests = dict(snapshot.requests)
        self.response_bodies = dict(snapshot.response_bodies)
