import pytest

from wallet_core.storage.database import SCHEMA_VERSION, Database


class TestDatabase:
    async def test_schema_is_current(self, db):
        assert await db.schema_version() == SCHEMA_VERSION

    async def test_reconnect_keeps_version(self, tmp_path):
        first = Database(tmp_path / "w.db")
        await first.connect()
        await first.set_setting("k", "v")
        await first.close()

        second = Database(tmp_path / "w.db")
        await second.connect()
        assert await second.schema_version() == SCHEMA_VERSION
        assert await second.get_setting("k") == "v"
        await second.close()

    async def test_settings_prefix(self, db):
        await db.set_setting("account:sepolia", "a")
        await db.set_setting("account:base", "b")
        await db.set_setting("theme", "dark")
        assert await db.settings_with_prefix("account:") == {
            "account:base": "b",
            "account:sepolia": "a",
        }
        assert await db.delete_settings("account:") == 2
        assert await db.get_setting("account:base") is None
        assert await db.get_setting("theme") == "dark"

    async def test_transaction_rolls_back(self, db):
        with pytest.raises(RuntimeError):
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO settings (key, value) VALUES ('x', '1')")
                raise RuntimeError("boom")
        assert await db.get_setting("x") is None

    async def test_wipe_keeps_contacts(self, db):
        await db.set_setting("k", "v")
        await db.execute(
            "INSERT INTO contacts (id, name, address, chain, timestamp) VALUES (?, ?, ?, ?, ?)",
            ("c1", "Bob", "0x000000000000000000000000000000000000dead", "sepolia", 1),
        )
        await db.wipe_wallet()
        assert await db.get_setting("k") is None
        assert len(await db.fetch_all("SELECT * FROM contacts")) == 1

    async def test_unconnected_raises(self, tmp_path):
        with pytest.raises(RuntimeError):
            await Database(tmp_path / "none.db").fetch_one("SELECT 1")
