"""Deterministic account derivation from a BIP-39 seed phrase.

Signing must use the exact key behind the address the user was shown. The
canonical path is tried first; when an expected address is known and the
canonical path does not reproduce it, an ordered list of named alternative
strategies is searched. If none matches, :class:`DerivationMismatchError`
reports every candidate that was tried.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

from eth_account import Account
from eth_account.hdaccount import key_from_seed, seed_from_mnemonic
from mnemonic import Mnemonic
from web3 import Web3

from wallet_core.errors import DerivationMismatchError, ValidationError

logger = logging.getLogger("wallet_core.wallet.derivation")

# Enable HD wallet features
Account.enable_unaudited_hdwallet_features()

MNEMONIC = Mnemonic("english")

_WORD_COUNTS = {12: 128, 15: 160, 18: 192, 21: 224, 24: 256}


@dataclass(frozen=True)
class DerivationStrategy:
    """A named HD path template; ``{index}`` is the account index."""

    name: str
    template: str

    def path(self, index: int) -> str:
        return self.template.format(index=index)


# Ordered: the first entry is the canonical BIP-44 Ethereum path.
EVM_STRATEGIES: tuple[DerivationStrategy, ...] = (
    DerivationStrategy("bip44", "m/44'/60'/0'/0/{index}"),
    DerivationStrategy("bip44-account", "m/44'/60'/{index}'/0/0"),
    DerivationStrategy("bip44-no-change", "m/44'/60'/0'/{index}"),
    DerivationStrategy("account-node", "m/44'/60'/{index}'"),
    DerivationStrategy("bip44-internal-change", "m/44'/60'/0'/1/{index}"),
    DerivationStrategy("bip44-second-account", "m/44'/60'/1'/0/{index}"),
)


@dataclass
class DerivedAccount:
    """An account derived at ``index``; the address never changes for a seed."""

    chain: str
    index: int
    address: str
    strategy: str
    path: str
    balance: str = "0"

    def to_dict(self) -> dict:
        return {
            "chain": self.chain,
            "index": self.index,
            "address": self.address,
            "strategy": self.strategy,
            "path": self.path,
            "balance": self.balance,
        }


@dataclass
class KeyMaterial:
    """A private key held only inside :meth:`KeyDerivation.unlocked_key`."""

    address: str
    strategy: str
    path: str
    private_key: bytearray


# ---------------------------------------------------------------------------
# Seed phrase helpers
# ---------------------------------------------------------------------------

def normalize_seed_phrase(seed_phrase: str) -> str:
    """Lower-case and collapse whitespace; raise if not a valid BIP-39 phrase."""
    if not isinstance(seed_phrase, str):
        raise ValidationError("Invalid seed phrase: expected a string")
    words = seed_phrase.strip().lower().split()
    if len(words) not in _WORD_COUNTS:
        raise ValidationError(
            f"Invalid seed phrase: must be 12, 15, 18, 21 or 24 words, got {len(words)}"
        )
    phrase = " ".join(words)
    if not MNEMONIC.check(phrase):
        raise ValidationError("Invalid seed phrase: checksum or word list mismatch")
    return phrase


def generate_seed_phrase(num_words: int = 12) -> str:
    """Generate a fresh English BIP-39 mnemonic."""
    if num_words not in _WORD_COUNTS:
        raise ValidationError("num_words must be one of 12/15/18/21/24")
    return MNEMONIC.generate(strength=_WORD_COUNTS[num_words])


def _address_for(private_key: bytes) -> str:
    return Account.from_key(private_key).address


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

class KeyDerivation:
    """Turns ``(seed phrase, chain, index)`` into an address or a scoped key.

    Never stores the seed phrase or any key it computes.
    """

    def __init__(self, strategies: Sequence[DerivationStrategy] = EVM_STRATEGIES) -> None:
        if not strategies:
            raise ValueError("At least one derivation strategy is required")
        self.strategies = tuple(strategies)

    @property
    def canonical(self) -> DerivationStrategy:
        return self.strategies[0]

    def _candidates(self, index: int) -> Iterator[tuple[DerivationStrategy, str]]:
        seen: set[str] = set()
        for strategy in self.strategies:
            path = strategy.path(index)
            if path in seen:
                continue
            seen.add(path)
            yield strategy, path

    def _resolve(
        self,
        seed_phrase: str,
        index: int,
        expected_address: str | None,
    ) -> tuple[DerivationStrategy, str, bytes, str]:
        if index < 0:
            raise ValidationError(f"Account index must be non-negative, got {index}")
        if expected_address is not None and not Web3.is_address(expected_address):
            raise ValidationError(f"Invalid expected address '{expected_address}'")

        seed = seed_from_mnemonic(normalize_seed_phrase(seed_phrase), passphrase="")
        tried: list[tuple[str, str, str]] = []
        for strategy, path in self._candidates(index):
            key = key_from_seed(seed, path)
            address = _address_for(key)
            if expected_address is None or same_address(address, expected_address):
                if strategy is not self.canonical:
                    logger.warning(
                        f"Account {index} matched non-canonical strategy "
                        f"'{strategy.name}' ({path})"
                    )
                else:
                    logger.debug(f"Account {index} derived with strategy '{strategy.name}'")
                return strategy, path, key, address
            tried.append((strategy.name, path, address))
            del key

        logger.error(
            f"No derivation strategy reproduces {expected_address} "
            f"({len(tried)} candidates tried)"
        )
        raise DerivationMismatchError(expected_address or "", tried)

    def derive_account(
        self,
        seed_phrase: str,
        chain: str,
        index: int = 0,
        expected_address: str | None = None,
    ) -> DerivedAccount:
        """Derive the public account at ``index`` without exposing its key."""
        strategy, path, key, address = self._resolve(seed_phrase, index, expected_address)
        del key
        return DerivedAccount(
            chain=chain,
            index=index,
            address=address,
            strategy=strategy.name,
            path=path,
        )

    @contextmanager
    def unlocked_key(
        self,
        seed_phrase: str,
        index: int,
        expected_address: str,
    ) -> Iterator[KeyMaterial]:
        """Yield the key whose address equals ``expected_address``.

        The key buffer is zeroed when the block exits, on success or error.
        """
        strategy, path, key, address = self._resolve(seed_phrase, index, expected_address)
        material = KeyMaterial(
            address=address,
            strategy=strategy.name,
            path=path,
            private_key=bytearray(key),
        )
        del key
        try:
            yield material
        finally:
            for i in range(len(material.private_key)):
                material.private_key[i] = 0
            material.private_key = bytearray()
