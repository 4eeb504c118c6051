"""Error taxonomy shared by every layer of the wallet core.

Each failure that leaves the core carries exactly one :class:`ErrorKind`.
Callers branch on ``exc.kind`` (or on the class), never on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    DERIVATION_MISMATCH = "derivation_mismatch"
    RPC = "rpc"
    TRANSPORT = "transport"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_INITIALIZED = "not_initialized"


class WalletError(Exception):
    """Base class for all wallet-core failures."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": str(self)}


class ValidationError(WalletError):
    """Malformed address, amount, seed phrase or request."""

    kind = ErrorKind.VALIDATION


class AuthenticationError(WalletError):
    """Wrong PIN or tampered ciphertext."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Decryption failed - incorrect PIN or corrupted data") -> None:
        super().__init__(message)


class DerivationMismatchError(WalletError):
    """No derivation strategy reproduced the expected address.

    ``candidates`` holds ``(strategy, path, address)`` for every path tried,
    in the order they were tried.
    """

    kind = ErrorKind.DERIVATION_MISMATCH

    def __init__(self, expected: str, candidates: list[tuple[str, str, str]]) -> None:
        self.expected = expected
        self.candidates = list(candidates)
        tried = ", ".join(f"{name} {path} -> {addr}" for name, path, addr in self.candidates)
        super().__init__(f"Cannot derive a key for {expected}. Tried: {tried}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["expected"] = self.expected
        data["candidates"] = [
            {"strategy": name, "path": path, "address": addr}
            for name, path, addr in self.candidates
        ]
        return data


class RpcError(WalletError):
    """The node (or explorer) answered with an explicit error. Not retried."""

    kind = ErrorKind.RPC

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        self.method = method
        self.code = code
        self.message = message
        suffix = f" (code {code})" if code is not None else ""
        super().__init__(f"{method} failed: {message}{suffix}")


class TransportError(WalletError):
    """Network failure, timeout or unusable response. Eligible for retry."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, method: str, cause: str) -> None:
        self.method = method
        self.cause = cause
        super().__init__(f"{method} transport failure: {cause}")


class InsufficientFundsError(WalletError):
    """Balance does not cover amount plus fee (minor units)."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int, symbol: str = "") -> None:
        self.required = required
        self.available = available
        self.symbol = symbol
        unit = f" {symbol}" if symbol else ""
        super().__init__(
            f"Insufficient funds: need {required}{unit} minor units, have {available}"
        )


class NotInitializedError(WalletError):
    """Operation called before the session reached the required state."""

    kind = ErrorKind.NOT_INITIALIZED

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while wallet session is '{state}'")


def is_retryable(exc: BaseException) -> bool:
    """Only transport failures are worth another attempt."""
    return isinstance(exc, WalletError) and exc.kind is ErrorKind.TRANSPORT
