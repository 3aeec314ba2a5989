"""Tests for the ledger RPC service."""
from __future__ import annotations

import asyncio
import base64
import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ALICE, CONTRACT, RELAYER
from fetchbridge.config import LedgerConfig
from fetchbridge.ledger import Ledger
from fetchbridge.main import create_app

BASE = f"/contracts/{CONTRACT}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


@pytest.fixture()
def client(ledger) -> TestClient:
    return TestClient(create_app(ledger=ledger))


def _relayer_headers() -> dict[str, str]:
    return {"X-Account-Id": RELAYER}


def test_health(client, ledger):
    ledger.fetch(ALICE, "https://x/y")
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "contract_id": CONTRACT, "pending": 1}


def test_list_requests_encodes_bytes_as_base64(client, ledger):
    ledger.fetch(ALICE, "https://x/y", context=b"\xffctx")
    token = ledger.list_requests()[0].continuation_token

    response = client.get(f"{BASE}/requests")

    assert response.status_code == 200
    assert response.json() == [
        {
            "request_id": 0,
            "url": "https://x/y",
            "caller": ALICE,
            "context": _b64(b"\xffctx"),
            "continuation_token": _b64(token),
        }
    ]


def test_unknown_contract_is_404(client):
    assert client.get("/contracts/other.test/requests").status_code == 404


def test_transaction_resolves_request(client, ledger):
    continuation = ledger.fetch(ALICE, "https://x/y")
    token = ledger.list_requests()[0].continuation_token

    response = client.post(
        f"{BASE}/transactions",
        headers=_relayer_headers(),
        json={
            "actions": [
                {
                    "method": "store_response_chunk",
                    "args": {"request_id": 0, "data": _b64(b"hello"), "append": False},
                },
                {
                    "method": "respond",
                    "args": {"request_id": 0, "continuation_token": _b64(token), "body": None},
                },
            ]
        },
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert continuation.result(timeout=1).body == b"hello"


def test_byte_arrays_are_accepted(client, ledger):
    ledger.fetch(ALICE, "https://x/y")
    response = client.post(
        f"{BASE}/transactions",
        headers=_relayer_headers(),
        json={
            "actions": [
                {
                    "method": "store_response_chunk",
                    "args": {"request_id": 0, "data": [104, 105], "append": False},
                }
            ]
        },
    )
    assert response.status_code == 200
    assert ledger.payloads.get(0) == b"hi"


@pytest.mark.parametrize(
    "args, status, code",
    [
        ({"request_id": 9, "continuation_token": _b64(b"\x00" * 32)}, 404, "NotFound"),
        ({"request_id": 0, "continuation_token": _b64(b"\x00" * 32)}, 409, "TokenMismatch"),
    ],
)
def test_ledger_errors_map_to_codes(client, ledger, args, status, code):
    ledger.fetch(ALICE, "https://x/y")
    response = client.post(
        f"{BASE}/transactions",
        headers=_relayer_headers(),
        json={"actions": [{"method": "respond", "args": args}]},
    )
    assert response.status_code == status
    assert response.json()["error"] == code


def test_no_body_is_conflict(client, ledger):
    ledger.fetch(ALICE, "https://x/y")
    token = ledger.list_requests()[0].continuation_token
    response = client.post(
        f"{BASE}/transactions",
        headers=_relayer_headers(),
        json={
            "actions": [
                {"method": "respond", "args": {"request_id": 0, "continuation_token": _b64(token)}}
            ]
        },
    )
    assert response.status_code == 409
    assert response.json()["error"] == "NoBody"
    assert len(ledger.list_requests()) == 1


def test_untrusted_signer_is_forbidden(client, ledger):
    ledger.fetch(ALICE, "https://x/y")
    response = client.post(
        f"{BASE}/transactions",
        headers={"X-Account-Id": ALICE},
        json={
            "actions": [
                {
                    "method": "store_response_chunk",
                    "args": {"request_id": 0, "data": _b64(b"x")},
                }
            ]
        },
    )
    assert response.status_code == 403
    assert response.json()["error"] == "Unauthorized"


def test_malformed_payloads_are_422(client):
    headers = _relayer_headers()
    assert client.post(f"{BASE}/transactions", headers=headers, json={"actions": []}).status_code == 422
    bad_method = {"actions": [{"method": "settle", "args": {}}]}
    assert client.post(f"{BASE}/transactions", headers=headers, json=bad_method).status_code == 422
    bad_bytes = {
        "actions": [
            {"method": "store_response_chunk", "args": {"request_id": 0, "data": "%%%"}}
        ]
    }
    assert client.post(f"{BASE}/transactions", headers=headers, json=bad_bytes).status_code == 422


def test_missing_account_header_is_401(client):
    response = client.post(
        f"{BASE}/transactions",
        json={"actions": [{"method": "store_response_chunk", "args": {"request_id": 0, "data": ""}}]},
    )
    assert response.status_code == 401


def test_access_keys_are_enforced_when_configured():
    ledger = Ledger(
        LedgerConfig(
            contract_id=CONTRACT,
            trusted_relayer=RELAYER,
            access_keys={RELAYER: "relayer-key"},
        )
    )
    ledger.fetch(ALICE, "https://x/y")
    client = TestClient(create_app(ledger=ledger))
    body = {"actions": [{"method": "store_response_chunk", "args": {"request_id": 0, "data": _b64(b"x")}}]}

    wrong = client.post(
        f"{BASE}/transactions",
        headers={"X-Account-Id": RELAYER, "X-Access-Key": "nope"},
        json=body,
    )
    assert wrong.status_code == 401

    right = client.post(
        f"{BASE}/transactions",
        headers={"X-Account-Id": RELAYER, "X-Access-Key": "relayer-key"},
        json=body,
    )
    assert right.status_code == 200


def test_trusted_relayer_and_events(client, ledger):
    ledger.fetch(ALICE, "https://x/y")
    assert client.get(f"{BASE}/trusted_relayer").json() == {"trusted_relayer": RELAYER}
    events = client.get(f"{BASE}/events").json()["events"]
    assert len(events) == 1
    assert events[0].startswith("EVENT_JSON:")


def test_fetch_waits_for_resolution(ledger):
    app = create_app(ledger=ledger)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://ledger.test") as http:
            call = asyncio.create_task(
                http.post(
                    f"{BASE}/fetch",
                    headers={"X-Account-Id": ALICE},
                    json={"url": "https://x/y", "context": _b64(b"ctx")},
                )
            )
            while not ledger.list_requests():
                await asyncio.sleep(0.01)
            pending = ledger.list_requests()[0]
            ledger.respond(RELAYER, pending.request_id, pending.continuation_token, body=b"payload")
            return await asyncio.wait_for(call, timeout=5)

    response = asyncio.run(scenario())

    assert response.status_code == 200
    assert response.json() == {
        "request_id": 0,
        "url": "https://x/y",
        "status": "Completed",
        "body": _b64(b"payload"),
        "context": _b64(b"ctx"),
        "caller": ALICE,
    }


def test_fetch_reports_timeout(ledger):
    app = create_app(ledger=ledger)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://ledger.test") as http:
            call = asyncio.create_task(
                http.post(f"{BASE}/fetch", headers={"X-Account-Id": ALICE}, json={"url": "https://x/slow"})
            )
            while not ledger.list_requests():
                await asyncio.sleep(0.01)
            ledger.host.expire(ledger.list_requests()[0].continuation_token)
            return await asyncio.wait_for(call, timeout=5)

    response = asyncio.run(scenario())

    assert response.json()["status"] == "TimedOut"
    assert response.json()["body"] is None


def test_fetch_waits_for_the_ledger_lock_off_the_event_loop(ledger):
    app = create_app(ledger=ledger)
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with ledger._lock:
            held.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    assert held.wait(timeout=5)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://ledger.test") as http:
            call = asyncio.create_task(
                http.post(f"{BASE}/fetch", headers={"X-Account-Id": ALICE}, json={"url": "https://x/y"})
            )
            started = time.monotonic()
            await asyncio.sleep(0.1)
            # the loop kept running while the fetch was blocked on the lock
            elapsed = time.monotonic() - started
            release.set()

            while not ledger.list_requests():
                await asyncio.sleep(0.01)
            pending = ledger.list_requests()[0]
            ledger.respond(RELAYER, pending.request_id, pending.continuation_token, body=b"ok")
            response = await asyncio.wait_for(call, timeout=5)
            return elapsed, response

    try:
        elapsed, response = asyncio.run(scenario())
    finally:
        release.set()
        holder.join(timeout=5)

    assert elapsed < 1
    assert response.json()["body"] == _b64(b"ok")
