"""Ledger RPC client — the relayer's view of the fetch contract.

Every submission is signed with the relayer's account id and access key.
A rejected call raises ``SubmissionError`` with the ledger's error code;
transport failures propagate as httpx errors.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
from pydantic import TypeAdapter

from fetchbridge.config import RelayerConfig
from fetchbridge.errors import SubmissionError
from fetchbridge.schemas import (
    Action,
    PendingRequest,
    TransactionOutcome,
    TransactionRequest,
    respond_action,
    store_chunk_action,
)

logger = logging.getLogger(__name__)

_pending_list = TypeAdapter(list[PendingRequest])


class LedgerClient:
    def __init__(self, config: RelayerConfig, http: httpx.AsyncClient) -> None:
        self._config = config
        self._http = http
        self._base = f"{config.rpc_url}/contracts/{config.contract_id}"

    def _headers(self) -> dict[str, str]:
        return {
            "X-Account-Id": self._config.relayer_id,
            "X-Access-Key": self._config.secret_key,
        }

    async def list_requests(self) -> list[PendingRequest]:
        response = await self._http.get(f"{self._base}/requests")
        response.raise_for_status()
        return _pending_list.validate_python(response.json())

    async def submit(self, actions: Sequence[Action]) -> TransactionOutcome:
        """Submit ``actions`` as one atomic transaction."""
        payload = TransactionRequest(actions=list(actions)).model_dump(mode="json")
        response = await self._http.post(
            f"{self._base}/transactions",
            json=payload,
            headers=self._headers(),
        )

        if response.is_error:
            code, message = _error_details(response)
            methods = "+".join(a.method for a in actions)
            raise SubmissionError(code, f"{methods} failed: {message}")

        return TransactionOutcome.model_validate(response.json())

    async def store_response_chunk(
        self, request_id: int, data: bytes, append: bool
    ) -> TransactionOutcome:
        return await self.submit([store_chunk_action(request_id, data, append)])

    async def respond(
        self, request_id: int, continuation_token: bytes, body: bytes | None = None
    ) -> TransactionOutcome:
        return await self.submit([respond_action(request_id, continuation_token, body)])


def _error_details(response: httpx.Response) -> tuple[str, str]:
    """Pull (code, message) out of an error response, whatever its shape."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP{response.status_code}", response.text

    if isinstance(data, dict):
        if "error" in data:
            return str(data["error"]), str(data.get("message", ""))
        if "detail" in data:
            return f"HTTP{response.status_code}", str(data["detail"])
    return f"HTTP{response.status_code}", str(data)
