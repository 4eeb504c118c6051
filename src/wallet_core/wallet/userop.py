"""Unsigned ERC-4337 UserOperation preparation.

Only the operation structure is produced; signing and bundler relaying are
not part of this package.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from eth_abi import decode, encode
from web3 import Web3

from wallet_core.errors import ValidationError
from wallet_core.wallet.builder import checksum_address
from wallet_core.wallet.rpc import RpcClient

EXECUTE_SELECTOR = Web3.keccak(text="execute(address,uint256,bytes)")[:4]
GET_NONCE_SELECTOR = Web3.keccak(text="getNonce(address,uint192)")[:4]

DEFAULT_CALL_GAS_LIMIT = 100_000
DEFAULT_VERIFICATION_GAS_LIMIT = 150_000
DEFAULT_PRE_VERIFICATION_GAS = 50_000


@dataclass(frozen=True)
class UserOperation:
    sender: str
    nonce: int
    init_code: str
    call_data: str
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: str = "0x"
    signature: str = "0x"

    def to_dict(self) -> dict:
        """camelCase wire form; integers as decimal strings."""
        raw = asdict(self)
        out: dict = {}
        for key, value in raw.items():
            head, *rest = key.split("_")
            name = head + "".join(part.capitalize() for part in rest)
            out[name] = str(value) if isinstance(value, int) else value
        return out


def _hex_bytes(data: str) -> bytes:
    text = data or "0x"
    if not text.startswith("0x"):
        raise ValidationError(f"Call data must be 0x-prefixed hex, got '{data}'")
    try:
        return bytes.fromhex(text[2:])
    except ValueError as exc:
        raise ValidationError(f"Call data is not valid hex: '{data}'") from exc


def encode_execute(to: str, value: int, data: str = "0x") -> str:
    """Call data for a smart account's ``execute(address,uint256,bytes)``."""
    args = encode(
        ["address", "uint256", "bytes"],
        [checksum_address(to), value, _hex_bytes(data)],
    )
    return "0x" + (EXECUTE_SELECTOR + args).hex()


async def entry_point_nonce(rpc: RpcClient, entry_point: str, sender: str, key: int = 0) -> int:
    """Read ``EntryPoint.getNonce(sender, key)``; an empty result means 0."""
    args = encode(["address", "uint192"], [checksum_address(sender), key])
    data = "0x" + (GET_NONCE_SELECTOR + args).hex()
    result = await rpc.call_contract(checksum_address(entry_point), data)
    raw = _hex_bytes(result)
    if not raw:
        return 0
    (nonce,) = decode(["uint256"], raw)
    return nonce


async def prepare_user_operation(
    rpc: RpcClient,
    sender: str,
    to: str,
    value: int = 0,
    data: str = "0x",
    *,
    entry_point: str = "",
) -> UserOperation:
    """Assemble an unsigned :class:`UserOperation` for ``sender``."""
    if value < 0:
        raise ValidationError("value must not be negative")
    call_data = encode_execute(to, value, data)
    nonce = await entry_point_nonce(rpc, entry_point, sender) if entry_point else 0
    gas_price = await rpc.gas_price()
    return UserOperation(
        sender=checksum_address(sender),
        nonce=nonce,
        init_code="0x",
        call_data=call_data,
        call_gas_limit=DEFAULT_CALL_GAS_LIMIT,
        verification_gas_limit=DEFAULT_VERIFICATION_GAS_LIMIT,
        pre_verification_gas=DEFAULT_PRE_VERIFICATION_GAS,
        max_fee_per_gas=gas_price,
        max_priority_fee_per_gas=gas_price,
    )
