"""Assemble unsigned transactions from current chain state."""

from __future__ import annotations

import logging

from eth_abi import encode
from web3 import Web3

from wallet_core.errors import RpcError, ValidationError
from wallet_core.wallet.chains import Chain, Token
from wallet_core.wallet.rpc import RpcClient, tx_params
from wallet_core.wallet.transactions import RawTransaction
from wallet_core.wallet.units import to_minor_units

logger = logging.getLogger("wallet_core.wallet.builder")

DEFAULT_GAS_LIMIT = 21_000
DEFAULT_TOKEN_GAS_LIMIT = 65_000

TRANSFER_SELECTOR = Web3.keccak(text="transfer(address,uint256)")[:4]
BALANCE_OF_SELECTOR = Web3.keccak(text="balanceOf(address)")[:4]


def checksum_address(address: str) -> str:
    """Return the EIP-55 form of ``address`` or raise :class:`ValidationError`."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid address '{address}'")
    return Web3.to_checksum_address(address)


def encode_transfer(to: str, amount: int) -> str:
    """Call data for ERC-20 ``transfer(address,uint256)``."""
    args = encode(["address", "uint256"], [checksum_address(to), amount])
    return "0x" + (TRANSFER_SELECTOR + args).hex()


def encode_balance_of(holder: str) -> str:
    """Call data for ERC-20 ``balanceOf(address)``."""
    args = encode(["address"], [checksum_address(holder)])
    return "0x" + (BALANCE_OF_SELECTOR + args).hex()


class TransactionBuilder:
    """Builds :class:`RawTransaction` objects for one chain.

    Nonce, gas price and gas limit come from the node. Amounts are converted
    to minor units with integer arithmetic only.
    """

    def __init__(self, rpc: RpcClient, chain: Chain) -> None:
        self.rpc = rpc
        self.chain = chain

    async def _estimate(self, call: dict, fallback: int) -> int:
        try:
            return await self.rpc.estimate_gas(tx_params(call))
        except RpcError as exc:
            logger.warning(
                f"Gas estimation failed on {self.chain.name} ({exc.message}); "
                f"using default {fallback}"
            )
            return fallback

    async def build(
        self,
        sender: str,
        to: str,
        amount: str,
        *,
        token: Token | None = None,
        data: str = "0x",
        min_nonce: int = 0,
    ) -> RawTransaction:
        """Build an unsigned transfer of ``amount`` from ``sender`` to ``to``.

        With ``token`` set, the transaction targets the token contract with
        ``value = 0`` and ERC-20 transfer call data. ``min_nonce`` raises the
        node's pending nonce when the caller has already used later nonces.
        """
        sender = checksum_address(sender)
        to = checksum_address(to)
        decimals = token.decimals if token is not None else self.chain.decimals
        minor = to_minor_units(amount, decimals)
        if minor <= 0:
            raise ValidationError(f"Amount must be greater than zero, got '{amount}'")

        if token is not None:
            if data not in ("", "0x"):
                raise ValidationError("Token transfers cannot carry extra call data")
            target = checksum_address(token.address)
            value = 0
            data = encode_transfer(to, minor)
            fallback = DEFAULT_TOKEN_GAS_LIMIT
        else:
            target = to
            value = minor
            data = data or "0x"
            fallback = DEFAULT_GAS_LIMIT

        chain_nonce = await self.rpc.get_transaction_count(sender, "pending")
        nonce = max(chain_nonce, min_nonce)
        gas_price = await self.rpc.gas_price()
        gas_limit = await self._estimate(
            {"from": sender, "to": target, "value": value, "data": data},
            fallback,
        )

        tx = RawTransaction(
            sender=sender,
            to=target,
            value=value,
            gas_limit=gas_limit,
            gas_price=gas_price,
            nonce=nonce,
            chain_id=self.chain.chain_id,
            data=data,
        )
        logger.debug(
            f"Built tx on {self.chain.name}: nonce={nonce} gas={gas_limit} "
            f"gasPrice={gas_price} value={value}"
        )
        return tx

    async def build_call(
        self,
        sender: str,
        to: str,
        data: str,
        value: int = 0,
        *,
        min_nonce: int = 0,
    ) -> RawTransaction:
        """Build an arbitrary contract call with an exact minor-unit ``value``."""
        sender = checksum_address(sender)
        to = checksum_address(to)
        if value < 0:
            raise ValidationError("Call value must not be negative")
        nonce = max(await self.rpc.get_transaction_count(sender, "pending"), min_nonce)
        gas_price = await self.rpc.gas_price()
        gas_limit = await self._estimate(
            {"from": sender, "to": to, "value": value, "data": data},
            DEFAULT_TOKEN_GAS_LIMIT,
        )
        return RawTransaction(
            sender=sender,
            to=to,
            value=value,
            gas_limit=gas_limit,
            gas_price=gas_price,
            nonce=nonce,
            chain_id=self.chain.chain_id,
            data=data or "0x",
        )
