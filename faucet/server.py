"""BNB Faucet Service

A small FastAPI service to power a web faucet. It:
- Validates the recipient address posted to /send-bnb
- Signs a fixed 0.0002 BNB transfer from the faucet wallet and broadcasts it
- Waits for one confirmation and reports the transaction hash

Environment variables (a .env file in the working directory is read first):
  RPC_URL             Chain JSON-RPC endpoint (required)
  PRIVATE_KEY         Faucet wallet private key (required)
  PORT                Listen port (default: 3000)
  HOST                Listen host (default: 0.0.0.0)
  CONFIRM_TIMEOUT_S   Seconds to wait for a receipt (default: 120)
  CONFIRM_POLL_S      Receipt polling interval in seconds (default: 1)
  LOG_LEVEL           Logging level (default: INFO)

Run:
  bnb-faucet
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Tuple, TypeVar
from urllib.parse import urlsplit

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from faucet.handler import ChainClient, TransferError, TransferHandler, TransferRequest
from wallet.wallet import Web3ChainClient, WalletIdentity


log = logging.getLogger("bnb.faucet")
logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")

CORS_METHODS = ["GET", "POST", "OPTIONS", "PUT", "DELETE", "HEAD"]
CORS_HEADERS = ["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"]
# nginx convention for a request the client abandoned
CLIENT_CLOSED_REQUEST = 499

T = TypeVar("T")


class ConfigError(RuntimeError):
    """Missing or malformed startup configuration."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class FaucetConfig:
    rpc_url: str
    private_key: str = field(repr=False)
    host: str = "0.0.0.0"
    port: int = 3000
    confirm_timeout_s: float = 120.0
    confirm_poll_s: float = 1.0
    log_level: str = "INFO"


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def load_config() -> FaucetConfig:
    rpc_url = os.getenv("RPC_URL", "").strip()
    if not rpc_url:
        raise ConfigError("RPC_URL must be set")
    private_key = os.getenv("PRIVATE_KEY", "").strip()
    if not private_key:
        raise ConfigError("PRIVATE_KEY must be set")
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"LOG_LEVEL {log_level!r} is not a logging level")
    return FaucetConfig(
        rpc_url=rpc_url,
        private_key=private_key,
        host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=_env_number("PORT", 3000, int),
        confirm_timeout_s=_env_number("CONFIRM_TIMEOUT_S", 120.0, float),
        confirm_poll_s=_env_number("CONFIRM_POLL_S", 1.0, float),
        log_level=log_level,
    )


def build_faucet(cfg: FaucetConfig) -> Tuple[Web3ChainClient, WalletIdentity]:
    try:
        identity = WalletIdentity.from_private_key(cfg.private_key)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    client = Web3ChainClient.connect(
        cfg.rpc_url,
        confirm_timeout=cfg.confirm_timeout_s,
        poll_latency=cfg.confirm_poll_s,
    )
    return client, identity


class SendRequest(BaseModel):
    recipient: Optional[str] = None


def declares_json(request: Request) -> bool:
    media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


async def _wait_for_disconnect(request: Request) -> None:
    # the body is already read, so the next message is the disconnect
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def run_bound_to_client(request: Request, work: Awaitable[T]) -> Optional[T]:
    """Run ``work`` until it completes or the client disconnects.

    Returns None when the client went away first; ``work`` is cancelled then.
    Cancelling an await does not undo side effects it already caused.
    """
    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        watcher.cancel()
    if task.done():
        return task.result()
    task.cancel()
    await asyncio.wait({task})
    return None


def create_app(client: ChainClient, identity: WalletIdentity) -> FastAPI:
    handler = TransferHandler(client, identity)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.close()

    app = FastAPI(title="BNB Faucet", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        log.info("%s %s -> %d (%.0f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        if not declares_json(request):
            # non-JSON payloads carry no recipient field
            return JSONResponse(status_code=400, content={"error": "Recipient address is required"})
        if any("recipient" in err.get("loc", ()) for err in exc.errors()):
            return JSONResponse(status_code=400, content={"error": "Invalid recipient address"})
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.get("/")
    def root():
        return {
            "status": "ok",
            "message": "BNB Faucet API is running",
            "timestamp": now_iso(),
            "walletAddress": identity.address,
        }

    @app.post("/send-bnb")
    async def send_bnb(request: Request, body: Optional[SendRequest] = None):
        transfer = TransferRequest(recipient=body.recipient if body else None)
        outcome = await run_bound_to_client(request, handler.handle(transfer))
        if outcome is None:
            log.warning("Client closed %s %s before the transfer completed", request.method, request.url.path)
            return JSONResponse(status_code=CLIENT_CLOSED_REQUEST, content={"error": "Client closed request"})
        if isinstance(outcome, TransferError):
            return JSONResponse(status_code=outcome.status_code, content=outcome.to_body())
        return outcome.to_body()

    return app


def main() -> int:
    load_dotenv()
    try:
        cfg = load_config()
        client, identity = build_faucet(cfg)
    except ConfigError as exc:
        log.error("Refusing to start: %s", exc)
        return 1
    logging.getLogger().setLevel(cfg.log_level)
    log.info("Faucet address: %s (rpc=%s)", identity.address, urlsplit(cfg.rpc_url).netloc or cfg.rpc_url)
    uvicorn.run(create_app(client, identity), host=cfg.host, port=cfg.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
