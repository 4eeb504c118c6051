"""PIN-protected seed storage.

The seed phrase is encrypted with AES-256-GCM under a key derived from the
PIN with PBKDF2-HMAC-SHA256 (100,000 iterations, 16-byte random salt) and a
fresh 96-bit IV per write. Only the ciphertext, IV, salt and a timestamp are
persisted. The PIN, the derived key and the plaintext seed are never logged.
"""

from __future__ import annotations

import asyncio
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from wallet_core.errors import AuthenticationError, NotInitializedError, ValidationError
from wallet_core.storage.database import Database
from wallet_core.storage.models import SEED_RECORD_ID, SeedRecord, now_ms

logger = logging.getLogger("wallet_core.wallet.vault")

# ============================================
# Security Constants
# ============================================

PBKDF2_ITERATIONS = 100_000
SALT_SIZE = 16
AES_KEY_SIZE = 32  # AES-256
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)


# ============================================
# Key derivation and encryption
# ============================================

def derive_key(pin: str, salt: bytes) -> bytes:
    """Derive a 256-bit AES key from ``pin`` and ``salt`` (CPU bound)."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(pin.encode("utf-8"))


def encrypt_seed(seed_phrase: str, pin: str) -> SeedRecord:
    """Encrypt a seed phrase into a fresh :class:`SeedRecord`."""
    salt = secrets.token_bytes(SALT_SIZE)
    iv = secrets.token_bytes(AES_IV_SIZE)
    key = derive_key(pin, salt)
    try:
        ciphertext = AESGCM(key).encrypt(iv, seed_phrase.encode("utf-8"), None)
    finally:
        del key
    return SeedRecord(ciphertext=ciphertext, iv=iv, salt=salt, timestamp=now_ms())


def decrypt_seed(record: SeedRecord, pin: str) -> str:
    """Decrypt ``record`` with ``pin``.

    Raises :class:`AuthenticationError` if the PIN is wrong or the record was
    tampered with; never returns partial plaintext.
    """
    key = derive_key(pin, record.salt)
    try:
        plaintext = AESGCM(key).decrypt(record.iv, record.ciphertext, None)
    except (InvalidTag, ValueError) as exc:
        raise AuthenticationError() from exc
    finally:
        del key
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AuthenticationError() from exc


def _check_inputs(seed_phrase: str | None, pin: str) -> None:
    if seed_phrase is not None and (not isinstance(seed_phrase, str) or not seed_phrase.strip()):
        raise ValidationError("Seed phrase must be a non-empty string")
    if not isinstance(pin, str) or not pin:
        raise ValidationError("PIN must be a non-empty string")


# ============================================
# Vault
# ============================================

class SeedVault:
    """Encrypted-at-rest storage of exactly one seed record per wallet.

    Key derivation and AES work run in a worker thread so that one PIN
    unlock does not stall the event loop for other sessions.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    async def _load(self) -> SeedRecord | None:
        row = await self.db.fetch_one(
            "SELECT id, ciphertext, iv, salt, timestamp FROM wallet WHERE id = ?",
            (SEED_RECORD_ID,),
        )
        if row is None:
            return None
        return SeedRecord(**row)

    async def _save(self, record: SeedRecord) -> None:
        # Single statement: the previous row stays intact until this commits.
        await self.db.execute(
            "INSERT OR REPLACE INTO wallet (id, ciphertext, iv, salt, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (record.id, record.ciphertext, record.iv, record.salt, record.timestamp),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def store_seed(self, seed_phrase: str, pin: str) -> None:
        """Encrypt and persist ``seed_phrase``, replacing any prior record."""
        _check_inputs(seed_phrase, pin)
        record = await asyncio.to_thread(encrypt_seed, seed_phrase, pin)
        await self._save(record)
        logger.info("Seed phrase encrypted and stored")

    async def retrieve_seed(self, pin: str) -> str:
        """Decrypt and return the stored seed phrase.

        Raises
        ------
        AuthenticationError
            Wrong PIN or corrupted record.
        NotInitializedError
            No seed has been stored yet.
        """
        _check_inputs(None, pin)
        record = await self._load()
        if record is None:
            raise NotInitializedError("retrieve the seed", "no seed stored")
        try:
            return await asyncio.to_thread(decrypt_seed, record, pin)
        except AuthenticationError:
            logger.warning("Seed decryption failed")
            raise

    async def verify_pin(self, pin: str) -> bool:
        """Return whether ``pin`` unlocks the stored seed."""
        if not await self.has_seed():
            return False
        try:
            await self.retrieve_seed(pin)
        except AuthenticationError:
            return False
        return True

    async def has_seed(self) -> bool:
        """Check whether a seed record exists (no decryption)."""
        row = await self.db.fetch_one(
            "SELECT 1 AS present FROM wallet WHERE id = ?", (SEED_RECORD_ID,)
        )
        return row is not None

    async def created_at(self) -> int | None:
        """Epoch-millisecond timestamp of the stored record, if any."""
        row = await self.db.fetch_one(
            "SELECT timestamp FROM wallet WHERE id = ?", (SEED_RECORD_ID,)
        )
        return row["timestamp"] if row else None

    async def change_pin(self, old_pin: str, new_pin: str) -> None:
        """Re-encrypt the seed under ``new_pin`` with a fresh salt and IV.

        The new record is fully built before the single replacing write, so
        a failure at any earlier point leaves the old record untouched.
        """
        _check_inputs(None, new_pin)
        seed_phrase = await self.retrieve_seed(old_pin)
        try:
            record = await asyncio.to_thread(encrypt_seed, seed_phrase, new_pin)
        finally:
            del seed_phrase
        await self._save(record)
        logger.info("PIN changed")

    async def clear(self) -> None:
        """Irreversibly erase the seed record and wallet settings."""
        await self.db.wipe_wallet()
        logger.info("Wallet data cleared")
