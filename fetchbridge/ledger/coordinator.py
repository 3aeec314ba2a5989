"""Continuation coordinator — the fetch contract itself.

``create_request`` suspends the caller and registers the request;
``resolve_request`` validates the relayer's answer and asks the host to
resume; ``settle`` runs as the host callback, exactly once per request, and
turns the registry entry plus any staged bytes into the caller's FetchResult.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

from fetchbridge.errors import NoBody, NotFound, TokenMismatch, Unauthorized
from fetchbridge.ledger.host import Continuation, ContinuationHost, Outcome
from fetchbridge.ledger.payloads import PayloadStore
from fetchbridge.ledger.registry import RequestRegistry
from fetchbridge.ledger.store import StoredRequest
from fetchbridge.schemas import FetchResult, FetchStatus, PendingRequest

logger = logging.getLogger(__name__)

CALLBACK_ID = "on_fetch_complete"
EVENT_STANDARD = "http_fetch"
EVENT_VERSION = "1.0.0"


def format_event(event: str, data: list[dict]) -> str:
    """Render a structured log line for off-ledger observers."""
    payload = {
        "standard": EVENT_STANDARD,
        "version": EVENT_VERSION,
        "event": event,
        "data": data,
    }
    return "EVENT_JSON:" + json.dumps(payload, separators=(",", ":"))


class ContinuationCoordinator:
    def __init__(
        self,
        registry: RequestRegistry,
        payloads: PayloadStore,
        host: ContinuationHost,
        trusted_relayer: str,
        emit: Callable[[str], None],
    ) -> None:
        self._registry = registry
        self._payloads = payloads
        self._host = host
        self._trusted_relayer = trusted_relayer
        self._emit = emit
        host.register_callback(CALLBACK_ID, self.settle)

    def trusted_relayer(self) -> str:
        return self._trusted_relayer

    def _ensure_trusted(self, predecessor: str) -> None:
        if predecessor != self._trusted_relayer:
            raise Unauthorized("Only the trusted relayer can respond")

    # ------------------------------------------------------------------
    # Open to any caller
    # ------------------------------------------------------------------

    def create_request(
        self, caller: str, url: str, context: bytes | None = None
    ) -> tuple[int, Continuation]:
        request_id = self._registry.allocate_id()
        token, continuation = self._host.suspend(CALLBACK_ID, request_id)

        self._registry.insert(
            request_id,
            StoredRequest(
                continuation_token=token,
                url=url,
                caller=caller,
                context=context,
            ),
        )
        self._emit(
            format_event(
                "fetch_request",
                [{"request_id": request_id, "url": url, "caller": caller}],
            )
        )
        logger.info(f"Request {request_id} suspended: {url} (caller={caller})")
        return request_id, continuation

    def list_requests(self) -> list[PendingRequest]:
        return self._registry.list()

    # ------------------------------------------------------------------
    # Trusted relayer only
    # ------------------------------------------------------------------

    def store_response_chunk(
        self, predecessor: str, request_id: int, data: bytes, append: bool
    ) -> None:
        self._ensure_trusted(predecessor)
        # Staged bytes only live as long as their request; settle removes both.
        if request_id not in self._registry:
            raise NotFound(f"Unknown request id {request_id}")
        staged = self._payloads.store_chunk(request_id, data, append)
        logger.debug(
            f"Request {request_id}: staged {len(data)} bytes "
            f"(append={append}, total={staged})"
        )

    def resolve_request(
        self,
        predecessor: str,
        request_id: int,
        continuation_token: bytes,
        inline_body: bytes | None = None,
    ) -> None:
        self._ensure_trusted(predecessor)

        request = self._registry.get(request_id)
        if request is None:
            raise NotFound(f"Unknown request id {request_id}")

        if bytes(continuation_token) != request.continuation_token:
            raise TokenMismatch("Continuation token does not match stored request")

        if inline_body is not None:
            self._payloads.put(request_id, inline_body)
        elif not self._payloads.has_body(request_id):
            raise NoBody(f"No stored body for request {request_id}")

        self._host.resume(request.continuation_token)
        logger.info(f"Request {request_id} resolved")

    # ------------------------------------------------------------------
    # Host callback
    # ------------------------------------------------------------------

    def settle(self, request_id: int, outcome: Outcome) -> FetchResult | None:
        request = self._registry.pop(request_id)
        body = self._payloads.discard(request_id)
        if request is None:
            logger.warning(f"Settle for unknown request {request_id} ignored")
            return None

        if outcome is Outcome.RESUMED:
            status = FetchStatus.COMPLETED
        else:
            status = FetchStatus.TIMED_OUT
            body = None
            logger.info(f"Request {request_id} timed out: {request.url}")

        return FetchResult(
            request_id=request_id,
            url=request.url,
            status=status,
            body=body,
            context=request.context,
            caller=request.caller,
        )
