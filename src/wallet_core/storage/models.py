"""Pydantic models mapping to the wallet-core database tables."""

from __future__ import annotations

import secrets
import time
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _new_contact_id() -> str:
    return f"contact_{now_ms()}_{secrets.token_hex(5)}"


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

SEED_RECORD_ID = "seed"


class SeedRecord(BaseModel):
    """Maps to the single ``wallet`` row holding the encrypted seed.

    ``ciphertext`` includes the 16-byte GCM authentication tag.
    """

    id: str = SEED_RECORD_ID
    ciphertext: bytes
    iv: bytes
    salt: bytes
    timestamp: int = Field(default_factory=now_ms)


class ContactRecord(BaseModel):
    """Maps to the ``contacts`` table."""

    id: str = Field(default_factory=_new_contact_id)
    name: str
    address: str
    chain: str = "sepolia"
    timestamp: int = Field(default_factory=now_ms)
    notes: Optional[str] = None
    last_used: Optional[int] = None
