"""Request/response models — the contract between the ledger, the relayer and callers.

Byte fields travel as base64 strings. Decoders also accept a JSON array of
integers (0..255) so array-of-bytes clients keep working.
"""

from __future__ import annotations

import base64
import binascii
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

U64_MAX = 2**64 - 1


def _decode_bytes(value: Any) -> Any:
    if value is None or isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64 payload: {e}") from e
    if isinstance(value, list):
        if not all(
            isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255
            for b in value
        ):
            raise ValueError("byte arrays must contain integers in 0..255")
        return bytes(value)
    raise ValueError(f"expected base64 string or byte array, got {type(value).__name__}")


def _encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


WireBytes = Annotated[
    bytes,
    BeforeValidator(_decode_bytes),
    PlainSerializer(_encode_bytes, return_type=str),
]

RequestId = Annotated[int, Field(ge=0, le=U64_MAX)]


class FetchStatus(str, Enum):
    COMPLETED = "Completed"
    TIMED_OUT = "TimedOut"


class PendingRequest(BaseModel):
    """Snapshot of one registry entry, as returned by ``list_requests``."""

    request_id: RequestId
    url: str
    caller: str
    context: WireBytes | None = None
    continuation_token: WireBytes


class FetchResult(BaseModel):
    """Delivered exactly once to the suspended caller. ``body`` is None unless Completed."""

    request_id: RequestId
    url: str
    status: FetchStatus
    body: WireBytes | None = None
    context: WireBytes | None = None
    caller: str


class FetchRequest(BaseModel):
    url: str
    context: WireBytes | None = None


# ---------------------------------------------------------------------------
# Relayer actions
# ---------------------------------------------------------------------------


class StoreChunkArgs(BaseModel):
    request_id: RequestId
    data: WireBytes
    append: bool = False


class RespondArgs(BaseModel):
    request_id: RequestId
    continuation_token: WireBytes
    body: WireBytes | None = None


class StoreChunkAction(BaseModel):
    method: Literal["store_response_chunk"] = "store_response_chunk"
    args: StoreChunkArgs

    def argument_bytes(self) -> int:
        return len(self.args.data)


class RespondAction(BaseModel):
    method: Literal["respond"] = "respond"
    args: RespondArgs

    def argument_bytes(self) -> int:
        return len(self.args.continuation_token) + len(self.args.body or b"")


Action = Annotated[StoreChunkAction | RespondAction, Field(discriminator="method")]


def store_chunk_action(request_id: int, data: bytes, append: bool) -> StoreChunkAction:
    return StoreChunkAction(
        args=StoreChunkArgs(request_id=request_id, data=data, append=append)
    )


def respond_action(
    request_id: int, continuation_token: bytes, body: bytes | None = None
) -> RespondAction:
    return RespondAction(
        args=RespondArgs(
            request_id=request_id, continuation_token=continuation_token, body=body
        )
    )


class TransactionRequest(BaseModel):
    """A multi-action submission: every action applies or none does."""

    actions: list[Action] = Field(min_length=1)


class TransactionOutcome(BaseModel):
    status: Literal["ok"] = "ok"


class ErrorResponse(BaseModel):
    error: str
    message: str
