"""FastAPI HTTP surface for wallet-core.

Every request is routed to an isolated :class:`WalletSession` looked up by
an opaque handle from the ``X-Wallet-Session`` header or the ``wallet.sid``
cookie. A new handle (and cookie) is issued when neither is present.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Literal, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wallet_core import __version__
from wallet_core.config import WalletCoreConfig, get_wallet_dir, load_config
from wallet_core.errors import ErrorKind, ValidationError, WalletError
from wallet_core.storage.database import Database
from wallet_core.wallet.registry import SessionRegistry
from wallet_core.wallet.session import SwapProvider, WalletSession
from wallet_core.wallet.transactions import Swap, Transfer

logger = logging.getLogger("wallet_core.api.server")

SESSION_HEADER = "X-Wallet-Session"
SESSION_COOKIE = "wallet.sid"
SWEEP_INTERVAL_SECONDS = 60

_HANDLE_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.NOT_INITIALIZED: 409,
    ErrorKind.INSUFFICIENT_FUNDS: 422,
    ErrorKind.DERIVATION_MISMATCH: 500,
    ErrorKind.RPC: 502,
    ErrorKind.TRANSPORT: 504,
}


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class InitializeBody(BaseModel):
    seedPhrase: Optional[str] = None
    pin: Optional[str] = None


class PinBody(BaseModel):
    pin: str


class TransferBody(BaseModel):
    to: str
    amount: str
    token: Optional[str] = None
    chain: Optional[str] = None


class SendBody(TransferBody):
    pin: str


class UserOpBody(BaseModel):
    to: str
    value: str = "0"
    data: str = "0x"
    chain: Optional[str] = None


class PendingBody(BaseModel):
    kind: Literal["transfer", "swap"] = "transfer"
    to: Optional[str] = None
    amount: str
    token: Optional[str] = None
    chain: Optional[str] = None
    fromToken: Optional[str] = None
    toToken: Optional[str] = None
    slippage: float = 0.5


class SwapQuoteBody(BaseModel):
    fromToken: str
    toToken: str
    amount: str
    slippage: float = 0.5
    chain: Optional[str] = None


def _pending_dict(pending: Transfer | Swap) -> dict:
    if isinstance(pending, Transfer):
        return {
            "id": pending.id,
            "kind": pending.kind,
            "to": pending.to_address,
            "amount": pending.amount,
            "token": pending.token,
            "chain": pending.chain,
        }
    return {
        "id": pending.id,
        "kind": pending.kind,
        "fromToken": pending.from_token,
        "toToken": pending.to_token,
        "amount": pending.amount,
        "slippage": pending.slippage,
        "chain": pending.chain,
    }


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def create_app(
    wallet: str = "default",
    base: Path | None = None,
    *,
    config: WalletCoreConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
    swap_provider: SwapProvider | None = None,
) -> FastAPI:
    """Build the API app; each session handle gets its own wallet database."""
    wallet_dir = get_wallet_dir(wallet, base)
    config = config or load_config(wallet_dir / "config.yaml")
    sessions_dir = wallet_dir / "sessions"

    async def _factory(handle: str) -> WalletSession:
        db = Database(sessions_dir / f"{handle}.db")
        await db.connect()
        return WalletSession(
            db,
            config,
            http_client=http_client,
            swap_provider=swap_provider,
            owns_db=True,
        )

    registry = SessionRegistry(_factory, config.session.idle_timeout_seconds)
    app = FastAPI(title="wallet-core API", version=__version__)
    app.state.registry = registry
    app.state.config = config

    async def _sweeper() -> None:
        while True:
            await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
            await registry.sweep()

    @app.on_event("startup")
    async def startup():
        app.state.sweeper = asyncio.create_task(_sweeper())
        logger.info(f"wallet-core API started for '{wallet}'")

    @app.on_event("shutdown")
    async def shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
        await registry.close_all()

    @app.exception_handler(WalletError)
    async def wallet_error(request: Request, exc: WalletError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=status, content={"success": False, "error": exc.to_dict()})

    async def current_session(
        request: Request,
        response: Response,
        x_wallet_session: Optional[str] = Header(None),
    ) -> WalletSession:
        handle = x_wallet_session or request.cookies.get(SESSION_COOKIE)
        if handle is None:
            handle = uuid.uuid4().hex
            response.set_cookie(SESSION_COOKIE, handle, httponly=True, samesite="strict")
        elif not _HANDLE_RE.match(handle):
            raise ValidationError("Malformed session handle")
        return await registry.get(handle)

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    @app.post("/api/wallet/initialize")
    async def api_initialize(body: InitializeBody, session: WalletSession = Depends(current_session)):
        result = await session.initialize(body.seedPhrase, pin=body.pin)
        return {"success": True, **result.to_dict()}

    @app.post("/api/wallet/secure")
    async def api_secure(body: PinBody, session: WalletSession = Depends(current_session)):
        await session.secure(body.pin)
        return {"success": True}

    @app.get("/api/wallet/account/{chain}/{index}")
    async def api_account(
        chain: str,
        index: int,
        x_wallet_pin: Optional[str] = Header(None),
        session: WalletSession = Depends(current_session),
    ):
        if index != session.account_index or not session.accounts:
            await session.derive_accounts(index, pin=x_wallet_pin)
        return {"success": True, "account": session.account(chain).to_dict()}

    @app.get("/api/wallet/balances")
    async def api_balances(session: WalletSession = Depends(current_session)):
        balances = await session.fetch_balances()
        return {"success": True, "balances": {name: b.to_dict() for name, b in balances.items()}}

    @app.get("/api/wallet/balance/{chain}")
    async def api_balance(chain: str, session: WalletSession = Depends(current_session)):
        balance = await session.fetch_balance(chain)
        return {"success": True, **balance.to_dict()}

    @app.post("/api/wallet/transaction/prepare")
    async def api_prepare(body: TransferBody, session: WalletSession = Depends(current_session)):
        tx = await session.prepare_transfer(body.to, body.amount, body.token, body.chain)
        return {"success": True, "transaction": tx.to_dict()}

    @app.post("/api/wallet/transaction/send")
    async def api_send(body: SendBody, session: WalletSession = Depends(current_session)):
        result = await session.send_transfer(
            body.to, body.amount, body.token, body.chain, pin=body.pin
        )
        return {"success": True, **result.to_dict()}

    @app.get("/api/wallet/transactions/{chain}/{address}")
    async def api_history(
        chain: str,
        address: str,
        limit: int = 50,
        session: WalletSession = Depends(current_session),
    ):
        entries = await session.get_history(address, limit, chain)
        return {"success": True, "transactions": [e.to_dict() for e in entries]}

    # ------------------------------------------------------------------
    # Pending queue
    # ------------------------------------------------------------------

    @app.post("/api/wallet/pending")
    async def api_queue(body: PendingBody, session: WalletSession = Depends(current_session)):
        if body.kind == "transfer":
            if not body.to:
                raise ValidationError("'to' is required for a transfer")
            pending = Transfer(body.to, body.amount, body.token, body.chain)
        else:
            if not body.fromToken or not body.toToken:
                raise ValidationError("'fromToken' and 'toToken' are required for a swap")
            pending = Swap(body.fromToken, body.toToken, body.amount, body.slippage, body.chain)
        session.queue_transaction(pending)
        return {"success": True, "pending": _pending_dict(pending)}

    @app.get("/api/wallet/pending")
    async def api_list_pending(session: WalletSession = Depends(current_session)):
        return {"success": True, "pending": [_pending_dict(p) for p in session.list_pending()]}

    @app.post("/api/wallet/pending/{pending_id}/approve")
    async def api_approve(
        pending_id: str,
        body: PinBody,
        session: WalletSession = Depends(current_session),
    ):
        result = await session.approve(pending_id, body.pin)
        return {"success": True, **result.to_dict()}

    @app.post("/api/wallet/pending/{pending_id}/reject")
    async def api_reject(pending_id: str, session: WalletSession = Depends(current_session)):
        session.reject(pending_id)
        return {"success": True}

    @app.post("/api/swap/quote")
    async def api_swap_quote(body: SwapQuoteBody, session: WalletSession = Depends(current_session)):
        swap = Swap(body.fromToken, body.toToken, body.amount, body.slippage, body.chain)
        return {"success": True, "quote": await session.get_swap_quote(swap)}

    # ------------------------------------------------------------------
    # Tokens, ERC-4337, health
    # ------------------------------------------------------------------

    @app.get("/api/tokens/balance")
    async def api_token_balance(
        token: str,
        chain: Optional[str] = None,
        address: Optional[str] = None,
        session: WalletSession = Depends(current_session),
    ):
        balance = await session.fetch_token_balance(token, chain, address)
        return {"success": True, **balance.to_dict()}

    @app.get("/api/tokens/list")
    async def api_tokens(chain: Optional[str] = None, session: WalletSession = Depends(current_session)):
        return {"success": True, "tokens": session.list_tokens(chain)}

    @app.post("/api/4337/prepare")
    async def api_prepare_userop(body: UserOpBody, session: WalletSession = Depends(current_session)):
        op = await session.prepare_user_operation(body.to, body.value, body.data, body.chain)
        return {"success": True, "userOp": op.to_dict()}

    @app.get("/api/health")
    async def api_health():
        return {"status": "ok", "version": __version__, "sessions": len(registry)}

    return app


def run_server(host: str = "127.0.0.1", port: int = 3001, wallet: str = "default") -> None:
    """Start the API server (blocking)."""
    uvicorn.run(create_app(wallet), host=host, port=port, log_level="info")
