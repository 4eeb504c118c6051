"""Builder, signer and broadcaster against the fake node."""

import httpx
import pytest
from eth_account import Account
from web3 import Web3

from wallet_core.errors import DerivationMismatchError, RpcError, TransportError, ValidationError
from wallet_core.wallet.broadcaster import Broadcaster
from wallet_core.wallet.builder import (
    DEFAULT_GAS_LIMIT,
    TransactionBuilder,
    encode_balance_of,
    encode_transfer,
)
from wallet_core.wallet.chains import Token, get_chain
from wallet_core.wallet.rpc import RpcClient
from wallet_core.wallet.signer import Signer
from wallet_core.wallet.transactions import RawTransaction, SignedTransaction

from conftest import ADDRESS, PHRASE, RECIPIENT, ZERO

SEPOLIA = get_chain("sepolia")
USDC = Token("USDC", "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238", 6)


@pytest.fixture
def rpc(http_client):
    return RpcClient(SEPOLIA.rpc_url, client=http_client)


@pytest.fixture
def builder(rpc):
    return TransactionBuilder(rpc, SEPOLIA)


class TestCallData:
    def test_transfer_selector_and_amount(self):
        data = encode_transfer(RECIPIENT, 1_500_000)
        assert data.startswith("0xa9059cbb")
        assert len(data) == 2 + 8 + 64 * 2
        assert data[-64:] == format(1_500_000, "064x")
        assert data[10:74].endswith(RECIPIENT[2:].lower())

    def test_balance_of_selector(self):
        assert encode_balance_of(ADDRESS).startswith("0x70a08231")


class TestTransactionBuilder:
    async def test_native_transfer(self, builder, node):
        node.nonce = 4
        tx = await builder.build(ADDRESS, ZERO, "0.01")
        assert tx.value == 10_000_000_000_000_000
        assert tx.nonce == 4
        assert tx.gas_price == node.gas_price
        assert tx.gas_limit == node.gas
        assert tx.chain_id == 11155111
        assert tx.data == "0x"
        assert isinstance(tx.value, int)

    async def test_gas_estimate_fallback(self, builder, node, caplog):
        node.estimate_error = True
        caplog.set_level("WARNING")
        tx = await builder.build(ADDRESS, RECIPIENT, "1")
        assert tx.gas_limit == DEFAULT_GAS_LIMIT
        assert "Gas estimation failed" in caplog.text

    async def test_min_nonce_raises_chain_nonce(self, builder, node):
        node.nonce = 2
        assert (await builder.build(ADDRESS, RECIPIENT, "1", min_nonce=5)).nonce == 5
        assert (await builder.build(ADDRESS, RECIPIENT, "1", min_nonce=1)).nonce == 2

    async def test_token_transfer(self, builder):
        tx = await builder.build(ADDRESS, RECIPIENT, "1.5", token=USDC)
        assert tx.to == Web3.to_checksum_address(USDC.address)
        assert tx.value == 0
        assert tx.data == encode_transfer(RECIPIENT, 1_500_000)

    @pytest.mark.parametrize("amount", ["0", "0.0", "-1", "abc"])
    async def test_rejects_bad_amount(self, builder, node, amount):
        with pytest.raises(ValidationError):
            await builder.build(ADDRESS, RECIPIENT, amount)
        assert node.calls == []

    async def test_rejects_bad_address(self, builder):
        with pytest.raises(ValidationError):
            await builder.build(ADDRESS, "0x1234", "1")

    async def test_transport_failure_propagates(self, builder, node):
        node.failures["eth_getTransactionCount"] = 2
        with pytest.raises(TransportError):
            await builder.build(ADDRESS, RECIPIENT, "1")


def _raw(nonce: int = 0, sender: str = ADDRESS) -> RawTransaction:
    return RawTransaction(
        sender=sender,
        to=RECIPIENT,
        value=10**16,
        gas_limit=21_000,
        gas_price=10**9,
        nonce=nonce,
        chain_id=11155111,
    )


class TestSigner:
    async def test_signature_recovers_sender(self):
        signed = await Signer().sign(_raw(nonce=3), PHRASE, 0)
        assert signed.raw_hex.startswith("0x")
        assert signed.nonce == 3
        assert Account.recover_transaction(signed.raw_hex) == ADDRESS

    def test_same_transaction_same_bytes(self):
        signer = Signer()
        assert signer.sign_sync(_raw(), PHRASE, 0) == signer.sign_sync(_raw(), PHRASE, 0)

    def test_refuses_key_for_other_address(self):
        with pytest.raises(DerivationMismatchError):
            Signer().sign_sync(_raw(sender=RECIPIENT), PHRASE, 0)


class TestBroadcaster:
    def _signed(self, gas_limit: int, gas_price: int) -> SignedTransaction:
        return SignedTransaction(
            raw_hex="0xf86c", hash="0x" + "ab" * 32, nonce=0, gas_limit=gas_limit, gas_price=gas_price
        )

    async def test_fee_is_exact_product(self, rpc):
        gas_limit, gas_price = 123_456_789, 987_654_321_123_456_789
        result = await Broadcaster(rpc).broadcast(self._signed(gas_limit, gas_price))
        assert result.fee == gas_limit * gas_price
        assert result.to_dict()["fee"] == str(gas_limit * gas_price)

    async def test_transport_failure_resends_same_bytes(self, rpc, node):
        node.failures["eth_sendRawTransaction"] = 1
        await Broadcaster(rpc, retries=1).broadcast(self._signed(21_000, 1))
        sends = [p for m, p in node.calls if m == "eth_sendRawTransaction"]
        assert sends == [["0xf86c"], ["0xf86c"]]

    async def test_transport_failure_surfaces_after_retry(self, rpc, node):
        node.failures["eth_sendRawTransaction"] = 2
        with pytest.raises(TransportError):
            await Broadcaster(rpc, retries=1).broadcast(self._signed(21_000, 1))

    async def test_node_rejection_not_retried(self, rpc, node):
        node.send_error = "nonce too low"
        with pytest.raises(RpcError) as info:
            await Broadcaster(rpc, retries=3).broadcast(self._signed(21_000, 1))
        assert info.value.message == "nonce too low"
        assert node.rpc_methods() == ["eth_sendRawTransaction"]

    async def test_returns_node_hash(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x" + "cd" * 32})

        rpc = RpcClient("https://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        result = await Broadcaster(rpc).broadcast(self._signed(21_000, 2))
        assert result.hash == "0x" + "cd" * 32
        assert result.fee == 42_000
