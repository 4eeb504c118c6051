import httpx
import pytest

from wallet_core.errors import RpcError, TransportError, ValidationError
from wallet_core.wallet.explorer import ExplorerClient, parse_entry

API = "https://api-sepolia.etherscan.io/api"
HOLDER = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"


def _explorer(payload=None, status_code: int = 200, api_key: str = "") -> tuple[ExplorerClient, list]:
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(status_code, json=payload)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExplorerClient(API, api_key, client=client), requests


ROW = {
    "hash": "0x" + "11" * 32,
    "from": HOLDER.lower(),
    "to": "0x000000000000000000000000000000000000dead",
    "value": "1500000000000000001",
    "timeStamp": "1700000000",
    "blockNumber": "4800000",
    "gasUsed": "21000",
    "gasPrice": "1000000000",
    "nonce": "3",
    "txreceipt_status": "1",
}


class TestExplorerClient:
    async def test_no_transactions_found_is_empty(self):
        explorer, _ = _explorer({"status": "0", "message": "No transactions found", "result": []})
        assert await explorer.get_transactions(HOLDER) == []

    async def test_other_status_zero_is_error(self):
        explorer, _ = _explorer({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
        with pytest.raises(RpcError) as info:
            await explorer.get_transactions(HOLDER)
        assert "Invalid API Key" in str(info.value)

    async def test_rows_are_parsed(self):
        explorer, requests = _explorer({"status": "1", "message": "OK", "result": [ROW]}, api_key="KEY")
        entries = await explorer.get_transactions(HOLDER, limit=10)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.value == "1.500000000000000001"
        assert entry.status == "confirmed"
        assert entry.block_number == 4_800_000
        params = requests[0].url.params
        assert params["action"] == "txlist"
        assert params["offset"] == "10"
        assert params["apikey"] == "KEY"

    async def test_unexpanded_key_not_sent(self):
        explorer, requests = _explorer(
            {"status": "0", "message": "No transactions found", "result": []},
            api_key="${ETHERSCAN_API_KEY}",
        )
        await explorer.get_transactions(HOLDER)
        assert "apikey" not in requests[0].url.params

    async def test_http_failure_is_transport_error(self):
        explorer, _ = _explorer({"error": "down"}, status_code=502)
        with pytest.raises(TransportError):
            await explorer.get_transactions(HOLDER)

    async def test_missing_api_url(self):
        with pytest.raises(ValidationError):
            await ExplorerClient("").get_transactions(HOLDER)


class TestParseEntry:
    def test_statuses_and_missing_to(self):
        failed = parse_entry({**ROW, "txreceipt_status": "0", "to": ""})
        assert failed.status == "failed"
        assert failed.to_address == ""
        assert parse_entry({**ROW, "txreceipt_status": ""}).status == "pending"

    def test_to_dict(self):
        data = parse_entry(ROW).to_dict()
        assert data["from"] == HOLDER.lower()
        assert data["gasPrice"] == "1000000000"
