"""Shared fixtures: a fake JSON-RPC node / explorer and temporary databases."""

from __future__ import annotations

import json

import httpx
import pytest
from web3 import Web3

from wallet_core.storage.database import Database
from wallet_core.wallet.session import WalletSession

PHRASE = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
PIN = "123456"
# m/44'/60'/0'/0/0 for PHRASE
ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
ZERO = "0x0000000000000000000000000000000000000000"
RECIPIENT = "0x000000000000000000000000000000000000dEaD"


class FakeNode:
    """Answers JSON-RPC POSTs and explorer GETs from in-memory state."""

    def __init__(self) -> None:
        self.balance: int | str = 10**18
        self.nonce = 0
        self.gas_price = 1_000_000_000
        self.gas = 21_000
        self.estimate_error = False
        self.call_result: str = "0x"
        self.send_error: str | None = None
        self.failures: dict[str, int] = {}
        self.errors: dict[str, dict] = {}
        self.failing_hosts: set[str] = set()
        self.explorer: dict = {"status": "0", "message": "No transactions found", "result": []}
        self.calls: list[tuple[str, list]] = []
        self.sent: list[str] = []
        self.explorer_requests: list[httpx.Request] = []

    def rpc_methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.explorer_requests.append(request)
            return httpx.Response(200, json=self.explorer)

        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))

        if request.url.host in self.failing_hosts:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "node unavailable"}})
        if self.failures.get(method):
            self.failures[method] -= 1
            raise httpx.ConnectError("connection refused", request=request)
        if method in self.errors:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": self.errors[method]})

        if method == "eth_getBalance":
            result = self.balance if isinstance(self.balance, str) else hex(self.balance)
        elif method == "eth_getTransactionCount":
            result = hex(self.nonce)
        elif method == "eth_gasPrice":
            result = hex(self.gas_price)
        elif method == "eth_estimateGas":
            if self.estimate_error:
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "execution reverted"}},
                )
            result = hex(self.gas)
        elif method == "eth_call":
            result = self.call_result
        elif method == "eth_sendRawTransaction":
            if self.send_error:
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": self.send_error}},
                )
            raw = params[0]
            self.sent.append(raw)
            result = Web3.to_hex(Web3.keccak(hexstr=raw))
        elif method == "eth_chainId":
            result = hex(11155111)
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
async def http_client(node):
    client = httpx.AsyncClient(transport=httpx.MockTransport(node))
    yield client
    await client.aclose()


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "wallet.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
async def session(db, http_client):
    s = WalletSession(db, http_client=http_client)
    yield s
    await s.close()


@pytest.fixture
async def ready_session(session):
    await session.initialize(PHRASE, pin=PIN)
    return session
