"""Ledger RPC service — FastAPI app exposing the fetch contract.

Callers POST to /contracts/{id}/fetch and wait for their FetchResult. The
relayer reads /contracts/{id}/requests and answers through
/contracts/{id}/transactions, one atomic multi-action submission per call.
The scheduler started in the lifespan drives continuation timeouts.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fetchbridge import __version__
from fetchbridge.config import LedgerConfig, load_config
from fetchbridge.errors import LedgerError
from fetchbridge.ledger import Ledger
from fetchbridge.scheduler import setup_scheduler
from fetchbridge.schemas import ErrorResponse, FetchRequest, TransactionRequest

logger = logging.getLogger(__name__)


def create_app(config: LedgerConfig | None = None, ledger: Ledger | None = None) -> FastAPI:
    """Build the service around ``ledger``, or around a fresh one built from config.

    A ledger passed in keeps whatever scheduler it was built with; the app
    only starts and stops the scheduler it creates itself.
    """
    scheduler = None
    if ledger is None:
        config = config or load_config().ledger
        scheduler = setup_scheduler()
        ledger = Ledger(config, scheduler=scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        logger.info(
            f"Ledger '{ledger.contract_id}' started "
            f"(trusted_relayer={ledger.trusted_relayer()}, "
            f"auth={'enabled' if ledger.config.access_keys else 'disabled'}, "
            f"timeout={ledger.config.continuation_timeout_secs}s)"
        )
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        logger.info(f"Ledger '{ledger.contract_id}' shutting down")

    app = FastAPI(title="fetchbridge ledger", version=__version__, lifespan=lifespan)
    app.state.ledger = ledger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ledger.config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.code, message=exc.message).model_dump(),
        )

    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_ledger(request: Request, contract_id: str) -> Ledger:
    ledger: Ledger = request.app.state.ledger
    if contract_id != ledger.contract_id:
        raise HTTPException(status_code=404, detail=f"Unknown contract '{contract_id}'")
    return ledger


async def get_signer(request: Request) -> str:
    """Return the calling account from X-Account-Id.

    When access keys are configured, X-Access-Key must match the account's
    key. With no keys configured, auth is disabled (dev mode).
    """
    account_id = request.headers.get("X-Account-Id")
    if not account_id:
        raise HTTPException(status_code=401, detail="Missing X-Account-Id header")

    access_keys = request.app.state.ledger.config.access_keys
    if not access_keys:
        return account_id

    expected = access_keys.get(account_id)
    key = request.headers.get("X-Access-Key", "")
    if expected is None or not secrets.compare_digest(key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing access key")
    return account_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


router = APIRouter()


@router.post("/contracts/{contract_id}/fetch")
async def fetch(
    request: FetchRequest,
    ledger: Ledger = Depends(get_ledger),
    signer: str = Depends(get_signer),
):
    """Suspend until the relayer answers or the continuation times out."""
    # ledger.fetch waits on the ledger lock; keep that off the event loop
    continuation = await run_in_threadpool(ledger.fetch, signer, request.url, request.context)
    result = await asyncio.shield(asyncio.wrap_future(continuation))
    if result is None:
        raise HTTPException(status_code=500, detail="Request settled without a result")
    return result.model_dump(mode="json")


@router.get("/contracts/{contract_id}/requests")
def list_requests(ledger: Ledger = Depends(get_ledger)):
    return [r.model_dump(mode="json") for r in ledger.list_requests()]


@router.post("/contracts/{contract_id}/transactions")
def submit(
    request: TransactionRequest,
    ledger: Ledger = Depends(get_ledger),
    signer: str = Depends(get_signer),
):
    outcome = ledger.submit(signer, request.actions)
    return outcome.model_dump()


@router.get("/contracts/{contract_id}/trusted_relayer")
def trusted_relayer(ledger: Ledger = Depends(get_ledger)):
    return {"trusted_relayer": ledger.trusted_relayer()}


@router.get("/contracts/{contract_id}/events")
def events(ledger: Ledger = Depends(get_ledger)):
    return {"events": list(ledger.events)}


@router.get("/health")
def health(request: Request):
    """Liveness check."""
    ledger: Ledger = request.app.state.ledger
    return {
        "status": "healthy",
        "contract_id": ledger.contract_id,
        "pending": len(ledger.registry),
    }


def serve(argv: list[str] | None = None) -> None:
    """Run the ledger service under uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(description="Run the fetchbridge ledger service")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    config = load_config(args.config)
    uvicorn.run(create_app(config.ledger), host=args.host, port=args.port)


if __name__ == "__main__":
    serve()
