"""Direct JSON-RPC 2.0 client for EVM nodes.

Talks to the node with plain ``httpx`` POSTs instead of a long-lived
provider object. An explicit ``error`` member in a response always wins
over ``result`` and becomes :class:`RpcError`; anything that prevents a
usable answer (timeout, refused connection, bad status, undecodable body)
becomes :class:`TransportError` and is retried a bounded number of times.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from wallet_core.errors import RpcError, TransportError, ValidationError
from wallet_core.wallet.units import parse_quantity, to_quantity

logger = logging.getLogger("wallet_core.wallet.rpc")


def _quantity(method: str, value: Any) -> int:
    try:
        return parse_quantity(value)
    except ValidationError as exc:
        raise RpcError(method, f"malformed quantity {value!r}") from exc


# Methods that must not be re-sent automatically by the client.
_NON_IDEMPOTENT = frozenset({"eth_sendRawTransaction"})


class RpcClient:
    """JSON-RPC over HTTPS for one chain.

    Parameters
    ----------
    url:
        Node endpoint.
    timeout:
        Per-request timeout in seconds.
    retries:
        Extra attempts after a transport failure (read methods only).
    client:
        Optional shared ``httpx.AsyncClient``; one is created (and owned)
        when omitted.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        retries: int = 1,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.retries = max(0, retries)
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # ------------------------------------------------------------------
    # Core call
    # ------------------------------------------------------------------

    async def _post(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        try:
            resp = await self._get_client().post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(method, f"timeout after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(method, f"{type(exc).__name__}: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("error") is not None:
            error = data["error"]
            if isinstance(error, dict):
                raise RpcError(method, str(error.get("message", error)), error.get("code"))
            raise RpcError(method, str(error))

        if resp.status_code >= 400:
            raise TransportError(method, f"HTTP {resp.status_code}")
        if not isinstance(data, dict) or "result" not in data:
            raise TransportError(method, "response carried neither result nor error")
        return data["result"]

    async def call(self, method: str, params: list | None = None) -> Any:
        """Invoke ``method`` and return its ``result``."""
        params = params or []
        attempts = 1 if method in _NON_IDEMPOTENT else self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._post(method, params)
            except TransportError as exc:
                if attempt >= attempts:
                    raise
                logger.warning(f"{method} attempt {attempt} failed ({exc.cause}); retrying")
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        result = await self.call("eth_getTransactionCount", [address, block])
        return _quantity("eth_getTransactionCount", result)

    async def gas_price(self) -> int:
        return _quantity("eth_gasPrice", await self.call("eth_gasPrice"))

    async def estimate_gas(self, tx: dict) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return _quantity("eth_estimateGas", result)

    async def call_contract(self, to: str, data: str, block: str = "latest") -> str:
        result = await self.call("eth_call", [{"to": to, "data": data}, block])
        return result or "0x"

    async def send_raw_transaction(self, raw_hex: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_hex])

    async def get_balance(self, address: str, block: str = "latest") -> int:
        result = await self.call("eth_getBalance", [address, block])
        return _quantity("eth_getBalance", result)

    async def chain_id(self) -> int:
        return _quantity("eth_chainId", await self.call("eth_chainId"))


def tx_params(tx: dict) -> dict:
    """Hex-encode integer fields of a call object for ``eth_estimateGas``."""
    out: dict = {}
    for key, value in tx.items():
        if value is None:
            continue
        out[key] = to_quantity(value) if isinstance(value, int) else value
    return out
