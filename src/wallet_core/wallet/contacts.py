"""Address book backed by the wallet database.

Contacts are not secret; only the seed record is encrypted.
"""

from __future__ import annotations

import logging

from web3 import Web3

from wallet_core.errors import ValidationError
from wallet_core.storage.database import Database
from wallet_core.storage.models import ContactRecord, now_ms

logger = logging.getLogger("wallet_core.wallet.contacts")

_UPDATABLE = ("name", "address", "chain", "notes")


def _normalize_address(address: str) -> str:
    address = (address or "").strip()
    if not Web3.is_address(address):
        raise ValidationError(f"Invalid address '{address}'")
    return address.lower()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactBook:
    """CRUD over the ``contacts`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self,
        name: str,
        address: str,
        chain: str = "sepolia",
        notes: str | None = None,
    ) -> ContactRecord:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Contact name is required")
        address = _normalize_address(address)

        existing = await self.db.fetch_one(
            "SELECT id FROM contacts WHERE name = ? AND address = ?", (name, address)
        )
        if existing:
            raise ValidationError(
                f"Contact '{name}' with address {address} already exists (ID: {existing['id']})"
            )

        record = ContactRecord(name=name, address=address, chain=chain, notes=notes)
        await self.db.execute(
            "INSERT INTO contacts (id, name, address, chain, timestamp, notes, last_used) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.name,
                record.address,
                record.chain,
                record.timestamp,
                record.notes,
                record.last_used,
            ),
        )
        logger.info(f"Contact added: {record.id}")
        return record

    async def get(self, contact_id: str) -> ContactRecord | None:
        row = await self.db.fetch_one("SELECT * FROM contacts WHERE id = ?", (contact_id,))
        return ContactRecord(**row) if row else None

    async def get_by_address(self, address: str) -> ContactRecord | None:
        row = await self.db.fetch_one(
            "SELECT * FROM contacts WHERE address = ? ORDER BY timestamp DESC",
            (_normalize_address(address),),
        )
        return ContactRecord(**row) if row else None

    async def search(self, name: str) -> list[ContactRecord]:
        """Case-insensitive substring match on the contact name."""
        needle = (name or "").strip()
        if not needle:
            return await self.list_all()
        rows = await self.db.fetch_all(
            "SELECT * FROM contacts WHERE name LIKE ? ESCAPE '\\' ORDER BY name",
            (f"%{_escape_like(needle)}%",),
        )
        return [ContactRecord(**r) for r in rows]

    async def list_all(self) -> list[ContactRecord]:
        rows = await self.db.fetch_all("SELECT * FROM contacts ORDER BY name")
        return [ContactRecord(**r) for r in rows]

    async def update(self, contact_id: str, **fields: str | None) -> ContactRecord:
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise ValidationError(f"Cannot update contact fields: {sorted(unknown)}")
        current = await self.get(contact_id)
        if current is None:
            raise ValidationError(f"Contact {contact_id} not found")
        if "address" in fields:
            fields["address"] = _normalize_address(fields["address"] or "")
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Contact name is required")

        updated = current.model_copy(update=fields)
        await self.db.execute(
            "UPDATE contacts SET name = ?, address = ?, chain = ?, notes = ? WHERE id = ?",
            (updated.name, updated.address, updated.chain, updated.notes, contact_id),
        )
        return updated

    async def delete(self, contact_id: str) -> bool:
        cursor = await self.db.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        return cursor.rowcount > 0

    async def touch(self, contact_id: str) -> None:
        """Record that the contact was just used as a recipient."""
        await self.db.execute(
            "UPDATE contacts SET last_used = ? WHERE id = ?", (now_ms(), contact_id)
        )
