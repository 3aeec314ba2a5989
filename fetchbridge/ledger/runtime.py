"""Ledger runtime — serialises calls and makes each one all-or-nothing.

Every call or multi-action transaction runs under one re-entrant lock, the
same lock the host takes when a timeout fires. A failing action restores
the store snapshot taken before the first action and drops any resume the
transaction had requested, so nothing a failed transaction did is visible.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Sequence
from typing import TYPE_CHECKING

from fetchbridge.errors import ArgumentTooLarge
from fetchbridge.ledger.coordinator import ContinuationCoordinator
from fetchbridge.ledger.host import Continuation, ContinuationHost
from fetchbridge.ledger.payloads import PayloadStore
from fetchbridge.ledger.registry import RequestRegistry
from fetchbridge.ledger.store import LedgerStore
from fetchbridge.schemas import (
    Action,
    PendingRequest,
    RespondAction,
    StoreChunkAction,
    TransactionOutcome,
    respond_action,
    store_chunk_action,
)

if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler

    from fetchbridge.config import LedgerConfig

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("fetchbridge.events")


class Ledger:
    def __init__(
        self,
        config: LedgerConfig,
        scheduler: BaseScheduler | None = None,
        store: LedgerStore | None = None,
    ) -> None:
        self.config = config
        self._lock = threading.RLock()
        self._store = store or LedgerStore()
        self.events: deque[str] = deque(maxlen=config.event_log_size)

        self.host = ContinuationHost(
            timeout_secs=config.continuation_timeout_secs,
            scheduler=scheduler,
            lock=self._lock,
        )
        self.registry = RequestRegistry(self._store)
        self.payloads = PayloadStore(self._store)
        self.coordinator = ContinuationCoordinator(
            registry=self.registry,
            payloads=self.payloads,
            host=self.host,
            trusted_relayer=config.trusted_relayer,
            emit=self._emit,
        )

    @property
    def contract_id(self) -> str:
        return self.config.contract_id

    def trusted_relayer(self) -> str:
        return self.coordinator.trusted_relayer()

    # ---------------------------------------------------------------------------
    # Calls
    # ---------------------------------------------------------------------------

    def fetch(self, caller: str, url: str, context: bytes | None = None) -> Continuation:
        """Register a fetch and return the caller's still-suspended continuation."""
        self._check_size("fetch", len(url.encode()) + len(context or b""))
        with self._lock:
            _, continuation = self._atomic(
                lambda: self.coordinator.create_request(caller, url, context)
            )
        return continuation

    def list_requests(self) -> list[PendingRequest]:
        with self._lock:
            return self.coordinator.list_requests()

    def store_response_chunk(
        self, signer: str, request_id: int, data: bytes, append: bool
    ) -> TransactionOutcome:
        return self.submit(signer, [store_chunk_action(request_id, data, append)])

    def respond(
        self,
        signer: str,
        request_id: int,
        continuation_token: bytes,
        body: bytes | None = None,
    ) -> TransactionOutcome:
        return self.submit(signer, [respond_action(request_id, continuation_token, body)])

    def submit(self, signer: str, actions: Sequence[Action]) -> TransactionOutcome:
        """Apply every action in order, atomically."""
        if not actions:
            raise ValueError("A transaction must contain at least one action")
        for action in actions:
            self._check_size(action.method, action.argument_bytes())

        with self._lock:
            self._atomic(lambda: [self._dispatch(signer, a) for a in actions])

        logger.debug(
            f"Transaction from {signer} applied: "
            f"{[a.method for a in actions]}"
        )
        return TransactionOutcome()

    # ---------------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------------

    def _atomic(self, apply):
        snapshot = self._store.snapshot()
        try:
            with self.host.batch():
                return apply()
        except Exception:
            self._store.restore(snapshot)
            raise

    def _dispatch(self, signer: str, action: Action) -> None:
        match action:
            case StoreChunkAction(args=args):
                self.coordinator.store_response_chunk(
                    signer, args.request_id, args.data, args.append
                )
            case RespondAction(args=args):
                self.coordinator.resolve_request(
                    signer, args.request_id, args.continuation_token, args.body
                )
            case _:
                raise ValueError(f"Unknown action: {action!r}")

    def _check_size(self, method: str, size: int) -> None:
        if size > self.config.max_argument_bytes:
            raise ArgumentTooLarge(
                f"{method} arguments are {size} bytes, "
                f"limit is {self.config.max_argument_bytes}"
            )

    def _emit(self, line: str) -> None:
        self.events.append(line)
        event_logger.info(line)
