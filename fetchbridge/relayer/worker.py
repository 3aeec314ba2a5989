"""Relay worker — polls the ledger, fetches URLs, submits bodies, resolves requests.

One cycle at a time, strictly sequential:

1. read the pending list; empty -> sleep the poll interval
2. for each request: one buffered GET, then
   - empty body        -> respond with an inline empty body
   - body <= chunk     -> one transaction: store chunk (replace) + respond
   - body  > chunk     -> replace, append..., then a separate respond
3. the first failure aborts the cycle; it is logged and the loop backs off
   for the same poll interval before re-reading the registry from scratch.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from fetchbridge import __version__
from fetchbridge.config import RelayerConfig
from fetchbridge.relayer.client import LedgerClient
from fetchbridge.schemas import PendingRequest, respond_action, store_chunk_action

logger = logging.getLogger(__name__)

USER_AGENT = f"fetchbridge-relayer/{__version__}"


def split_chunks(body: bytes, chunk_size: int) -> list[bytes]:
    """Split ``body`` into ceil(len / chunk_size) pieces; the last may be shorter."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [body[i : i + chunk_size] for i in range(0, len(body), chunk_size)]


def build_http_client(config: RelayerConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=config.http_timeout_secs,
        follow_redirects=True,
    )


class RelayWorker:
    def __init__(
        self,
        config: RelayerConfig,
        ledger: LedgerClient,
        http: httpx.AsyncClient,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.http = http

    async def process_once(self) -> bool:
        """Run one cycle. Returns False when there was nothing to do.

        Any error propagates and leaves the unprocessed requests pending.
        """
        pending = await self.ledger.list_requests()
        if not pending:
            return False

        logger.info(f"Cycle: {len(pending)} pending request(s)")
        for request in pending:
            logger.info(f"Processing request {request.request_id} for URL {request.url}")
            await self.handle_request(request)

        return True

    async def handle_request(self, request: PendingRequest) -> None:
        body = await self.fetch_body(request.url)
        request_id = request.request_id
        token = request.continuation_token

        if not body:
            await self.ledger.respond(request_id, token, body=b"")
        elif len(body) <= self.config.chunk_size:
            await self.store_and_resolve(request_id, token, body)
        else:
            await self.store_chunks(request_id, body)
            await self.ledger.respond(request_id, token, body=None)

        logger.info(f"Request {request_id} resolved with {len(body)} bytes")

    async def fetch_body(self, url: str) -> bytes:
        response = await self.http.get(url)
        if response.is_error:
            # The body is forwarded regardless; the caller decides what it means.
            logger.warning(f"GET {url} returned HTTP {response.status_code}")
        return response.content

    async def store_and_resolve(self, request_id: int, token: bytes, body: bytes) -> None:
        """Stage a single-chunk body and resolve in one atomic transaction."""
        await self.ledger.submit(
            [
                store_chunk_action(request_id, body, append=False),
                respond_action(request_id, token, body=None),
            ]
        )

    async def store_chunks(self, request_id: int, body: bytes) -> None:
        chunks = split_chunks(body, self.config.chunk_size)
        for index, chunk in enumerate(chunks):
            await self.ledger.store_response_chunk(request_id, chunk, append=index > 0)
            logger.debug(
                f"Request {request_id}: stored chunk {index + 1}/{len(chunks)} "
                f"({len(chunk)} bytes)"
            )

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Poll forever, or until ``stop`` is set.

        A cycle that did work is followed immediately by the next one; an
        empty or failed cycle sleeps the poll interval first.
        """
        stop = stop or asyncio.Event()
        interval = self.config.poll_interval_secs
        logger.info(
            f"Relayer {self.config.relayer_id} polling {self.config.contract_id} "
            f"every {interval}s (chunk_size={self.config.chunk_size})"
        )

        while not stop.is_set():
            try:
                did_work = await self.process_once()
            except Exception as e:
                logger.error(f"Relayer cycle failed: {e}", exc_info=True)
                did_work = False

            if not did_work:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass  # poll interval elapsed

        logger.info("Relayer stopped")
