"""Sign raw transactions with a key that lives only for the signing call."""

from __future__ import annotations

import asyncio
import logging

from eth_account import Account
from web3 import Web3

from wallet_core.errors import ValidationError
from wallet_core.wallet.derivation import KeyDerivation
from wallet_core.wallet.transactions import RawTransaction, SignedTransaction

logger = logging.getLogger("wallet_core.wallet.signer")


class Signer:
    """Produces :class:`SignedTransaction` objects.

    The private key is re-derived from the seed phrase for every call and
    must reproduce ``tx.sender``; its buffer is zeroed on every exit path.
    """

    def __init__(self, derivation: KeyDerivation | None = None) -> None:
        self.derivation = derivation or KeyDerivation()

    def sign_sync(self, tx: RawTransaction, seed_phrase: str, index: int) -> SignedTransaction:
        if tx.gas_limit <= 0 or tx.gas_price < 0 or tx.nonce < 0:
            raise ValidationError("Transaction has invalid gas or nonce fields")
        with self.derivation.unlocked_key(seed_phrase, index, tx.sender) as material:
            signed = Account.sign_transaction(tx.to_signable(), bytes(material.private_key))
        logger.debug(f"Signed tx nonce={tx.nonce} for {tx.sender}")
        return SignedTransaction(
            raw_hex=Web3.to_hex(signed.raw_transaction),
            hash=Web3.to_hex(signed.hash),
            nonce=tx.nonce,
            gas_limit=tx.gas_limit,
            gas_price=tx.gas_price,
        )

    async def sign(self, tx: RawTransaction, seed_phrase: str, index: int) -> SignedTransaction:
        """Sign ``tx`` off the event loop (seed stretching is CPU bound)."""
        return await asyncio.to_thread(self.sign_sync, tx, seed_phrase, index)
