"""Read-only transaction history from an Etherscan-compatible explorer."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from wallet_core.errors import RpcError, TransportError, ValidationError
from wallet_core.wallet.units import from_minor_units

logger = logging.getLogger("wallet_core.wallet.explorer")

# Explorer messages that accompany ``status: "0"`` but mean "empty list".
_EMPTY_MESSAGES = frozenset({"No transactions found", "OK"})


@dataclass(frozen=True)
class HistoryEntry:
    hash: str
    from_address: str
    to_address: str
    value: str
    timestamp: int
    block_number: int
    gas_used: int
    gas_price: int
    nonce: int
    status: str

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "timestamp": self.timestamp,
            "blockNumber": self.block_number,
            "gasUsed": str(self.gas_used),
            "gasPrice": str(self.gas_price),
            "nonce": self.nonce,
            "status": self.status,
        }


def _int(value: object) -> int:
    try:
        return int(str(value or "0"))
    except ValueError:
        return 0


def _status(receipt_status: object) -> str:
    if receipt_status == "1":
        return "confirmed"
    if receipt_status == "0":
        return "failed"
    return "pending"


def parse_entry(row: dict, decimals: int = 18) -> HistoryEntry:
    """Convert one explorer row; ``value`` becomes an exact decimal string."""
    return HistoryEntry(
        hash=row.get("hash", ""),
        from_address=row.get("from", ""),
        to_address=row.get("to") or "",
        value=from_minor_units(_int(row.get("value")), decimals),
        timestamp=_int(row.get("timeStamp")),
        block_number=_int(row.get("blockNumber")),
        gas_used=_int(row.get("gasUsed")),
        gas_price=_int(row.get("gasPrice")),
        nonce=_int(row.get("nonce")),
        status=_status(row.get("txreceipt_status")),
    )


class ExplorerClient:
    """``module=account&action=txlist`` against one explorer API."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def get_transactions(
        self,
        address: str,
        limit: int = 50,
        decimals: int = 18,
    ) -> list[HistoryEntry]:
        """Most recent transactions first."""
        if not self.api_url:
            raise ValidationError("No explorer API configured for this chain")
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")

        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        }
        # ``${ETHERSCAN_API_KEY}`` left unexpanded means no key.
        if self.api_key and not self.api_key.startswith("${"):
            params["apikey"] = self.api_key

        try:
            resp = await self._get_client().get(self.api_url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            raise TransportError("txlist", f"timeout after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError("txlist", f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise TransportError("txlist", "undecodable explorer response") from exc

        if not isinstance(data, dict):
            raise TransportError("txlist", "unexpected explorer response shape")

        status = str(data.get("status", ""))
        message = str(data.get("message", ""))
        result = data.get("result")

        if status == "0":
            if message in _EMPTY_MESSAGES:
                logger.info(f"No transactions found for {address}")
                return []
            detail = result if isinstance(result, str) and result else message
            raise RpcError("txlist", detail or "explorer returned status 0")

        if not isinstance(result, list):
            return []
        return [parse_entry(row, decimals) for row in result[:limit] if isinstance(row, dict)]
