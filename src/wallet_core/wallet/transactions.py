"""Transaction value types.

Every numeric field is an exact ``int``; none of these types ever holds a
float.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Union

from web3 import Web3


@dataclass(frozen=True)
class RawTransaction:
    """An unsigned legacy (type-0) transaction, immutable once built."""

    sender: str
    to: str
    value: int
    gas_limit: int
    gas_price: int
    nonce: int
    chain_id: int
    data: str = "0x"

    @property
    def max_fee(self) -> int:
        return self.gas_limit * self.gas_price

    def to_signable(self) -> dict:
        """The dict shape ``eth_account`` signs."""
        return {
            "to": Web3.to_checksum_address(self.to),
            "value": self.value,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "chainId": self.chain_id,
            "data": self.data,
        }

    def to_dict(self) -> dict:
        return {
            "from": self.sender,
            "to": self.to,
            "value": str(self.value),
            "gasLimit": str(self.gas_limit),
            "gasPrice": str(self.gas_price),
            "nonce": self.nonce,
            "chainId": self.chain_id,
            "data": self.data,
        }


@dataclass(frozen=True)
class SignedTransaction:
    """Output of the signer; ``hash`` is the locally computed expected hash."""

    raw_hex: str
    hash: str
    nonce: int
    gas_limit: int
    gas_price: int


@dataclass(frozen=True)
class BroadcastResult:
    """Node-reported hash and the exact maximum fee ``gas_limit * gas_price``."""

    hash: str
    fee: int
    nonce: int

    def to_dict(self) -> dict:
        return {"hash": self.hash, "fee": str(self.fee), "nonce": self.nonce}


# ---------------------------------------------------------------------------
# Pending operations awaiting approval
# ---------------------------------------------------------------------------

def _pending_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Transfer:
    """Send ``amount`` of ``token`` (``None`` = native asset) on ``chain``."""

    to_address: str
    amount: str
    token: str | None = None
    chain: str | None = None
    id: str = field(default_factory=_pending_id)

    kind = "transfer"


@dataclass(frozen=True)
class Swap:
    """Exchange ``amount`` of ``from_token`` for ``to_token`` within ``slippage`` %."""

    from_token: str
    to_token: str
    amount: str
    slippage: float = 0.5
    chain: str | None = None
    id: str = field(default_factory=_pending_id)

    kind = "swap"


PendingTransaction = Union[Transfer, Swap]
