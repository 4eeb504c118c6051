"""wallet-core storage layer -- async SQLite database and Pydantic models."""

from wallet_core.storage.database import Database, get_database
from wallet_core.storage.models import SEED_RECORD_ID, ContactRecord, SeedRecord, now_ms

__all__ = [
    "Database",
    "get_database",
    "SEED_RECORD_ID",
    "ContactRecord",
    "SeedRecord",
    "now_ms",
]
