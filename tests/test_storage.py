"""
Tests for the storage backends.

The PostgreSQL store is exercised against mocked asyncpg connections;
the in-memory store is exercised directly.
"""
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from navigator_vault.exceptions import AuthenticationError, ConfigurationError, ConflictError
from navigator_vault.models import EntryType, Role, UserAccount, VaultEntry
from navigator_vault.storage import MemoryStore, PostgresStore, migrate
from navigator_vault.storage.postgres import _affected, _as_uuid
from navigator_vault.vault.crypto import encrypt_bytes
from navigator_vault.vault.user_keys import UserKeyManager

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _mock_pool():
    """Build a pool whose acquire() yields one mocked connection."""
    tx = MagicMock()
    tx.start = AsyncMock()
    tx.commit = AsyncMock()
    tx.rollback = AsyncMock()

    conn = MagicMock()
    conn.transaction = MagicMock(return_value=tx)
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=0)

    @asynccontextmanager
    async def acquire(timeout=None):
        yield conn

    pool = MagicMock()
    pool.acquire = acquire
    pool.close = AsyncMock()
    return pool, conn, tx


def _account(keys, email="admin@vault.io", role=Role.ADMIN):
    return UserAccount(
        id=str(uuid.uuid4()),
        email=email,
        password_hash="$2b$04$hash",
        role=role,
        wrapped_key=keys.wrap_new_key(),
    )


@pytest.fixture
def keys():
    return UserKeyManager(os.urandom(32))


class TestHelpers:
    """Tests for identifier and status parsing."""

    def test_as_uuid(self):
        value = uuid.uuid4()
        assert _as_uuid(str(value)) == value
        assert _as_uuid("not-a-uuid") is None
        assert _as_uuid(None) is None

    def test_affected(self):
        assert _affected("UPDATE 1") == 1
        assert _affected("DELETE 0") == 0
        assert _affected("") == 0
        assert _affected(None) == 0


class TestPostgresTransaction:
    """Tests for the transaction contract."""

    async def test_commit_on_success(self):
        pool, conn, tx = _mock_pool()
        store = PostgresStore(pool)
        async with store.transaction() as session:
            conn.fetchval.return_value = 2
            assert await session.count_users() == 2
        tx.start.assert_awaited_once()
        tx.commit.assert_awaited_once()
        tx.rollback.assert_not_awaited()

    async def test_rollback_on_error(self):
        pool, conn, tx = _mock_pool()
        store = PostgresStore(pool)
        with pytest.raises(RuntimeError):
            async with store.transaction():
                raise RuntimeError("boom")
        tx.rollback.assert_awaited_once()
        tx.commit.assert_not_awaited()

    async def test_close(self):
        pool, _, _ = _mock_pool()
        await PostgresStore(pool).close()
        pool.close.assert_awaited_once()

    async def test_connect_requires_url(self, config):
        with pytest.raises(ConfigurationError):
            await PostgresStore.connect(config)


class TestPostgresSession:
    """Tests for PostgresSession queries."""

    async def test_malformed_id_matches_nothing(self):
        """Test malformed ids short-circuit without touching the database."""
        pool, conn, _ = _mock_pool()
        async with PostgresStore(pool).transaction() as session:
            assert await session.get_user("abc") is None
            assert await session.get_role("abc") is None
            assert await session.get_wrapped_key("abc") is None
            assert await session.delete_user("abc") is False
            assert await session.get_entry(str(uuid.uuid4()), "abc") is None
            assert await session.list_entries("abc") == []
        conn.fetchrow.assert_not_awaited()
        conn.fetch.assert_not_awaited()

    async def test_insert_user(self, keys):
        pool, conn, _ = _mock_pool()
        conn.fetchrow.return_value = {"created_at": NOW, "updated_at": NOW}
        account = _account(keys)
        async with PostgresStore(pool).transaction() as session:
            stored = await session.insert_user(account)
        assert stored.created_at == NOW
        args = conn.fetchrow.await_args.args
        assert args[1] == uuid.UUID(account.id)
        assert args[4] == "admin"
        assert args[8] == "aes-256-gcm"

    async def test_insert_duplicate_email(self, keys):
        pool, conn, _ = _mock_pool()
        conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")
        async with PostgresStore(pool).transaction() as session:
            with pytest.raises(ConflictError):
                await session.insert_user(_account(keys))

    async def test_wrapped_key_from_row(self, keys):
        pool, conn, _ = _mock_pool()
        blob = keys.wrap_new_key()
        record = blob.to_record()
        conn.fetchrow.return_value = {
            "key_ciphertext": record["ciphertext"],
            "key_nonce": record["nonce"],
            "key_tag": record["tag"],
            "key_alg": record["alg"],
        }
        async with PostgresStore(pool).transaction() as session:
            loaded = await session.get_wrapped_key(str(uuid.uuid4()))
        assert keys.unwrap(loaded) == keys.unwrap(blob)

    async def test_corrupt_key_columns(self):
        pool, conn, _ = _mock_pool()
        conn.fetchrow.return_value = {
            "key_ciphertext": "%%%",
            "key_nonce": "%%%",
            "key_tag": "%%%",
            "key_alg": "aes-256-gcm",
        }
        async with PostgresStore(pool).transaction() as session:
            with pytest.raises(AuthenticationError):
                await session.get_wrapped_key(str(uuid.uuid4()))

    async def test_count_admins_locks_rows(self):
        pool, conn, _ = _mock_pool()
        conn.fetch.return_value = [{"id": 1}, {"id": 2}]
        async with PostgresStore(pool).transaction() as session:
            assert await session.count_admins() == 2
        assert "FOR UPDATE" in conn.fetch.await_args.args[0]

    async def test_update_role_status(self):
        pool, conn, _ = _mock_pool()
        conn.execute.return_value = "UPDATE 0"
        async with PostgresStore(pool).transaction() as session:
            assert await session.update_role(str(uuid.uuid4()), Role.USER) is False

    async def test_get_entry_for_update(self, keys):
        pool, conn, _ = _mock_pool()
        record = encrypt_bytes(os.urandom(32), b"{}").to_record()
        entry_id, owner_id = str(uuid.uuid4()), str(uuid.uuid4())
        conn.fetchrow.return_value = {
            "id": entry_id,
            "user_id": owner_id,
            "title": "GitHub",
            "type": "Application",
            "category": "General",
            "enc_ciphertext": record["ciphertext"],
            "enc_nonce": record["nonce"],
            "enc_tag": record["tag"],
            "enc_alg": record["alg"],
            "created_at": NOW,
            "updated_at": NOW,
        }
        async with PostgresStore(pool).transaction() as session:
            entry = await session.get_entry(owner_id, entry_id, for_update=True)
        assert entry.type is EntryType.APPLICATION
        sql, eid, uid = conn.fetchrow.await_args.args
        assert sql.rstrip().endswith("FOR UPDATE")
        assert (eid, uid) == (uuid.UUID(entry_id), uuid.UUID(owner_id))


class TestMigrations:
    """Tests for the migration runner."""

    async def test_applies_pending(self):
        pool, conn, tx = _mock_pool()
        conn.fetchval.return_value = None
        applied = await migrate(pool)
        assert applied == ["001_initial", "003_roles"]
        tx.commit.assert_awaited_once()

    async def test_skips_applied(self):
        pool, conn, tx = _mock_pool()
        conn.fetchval.return_value = 1
        assert await migrate(pool) == []

    async def test_rolls_back_on_failure(self):
        pool, conn, tx = _mock_pool()
        conn.fetchval.return_value = None
        conn.execute.side_effect = [None, None, RuntimeError("syntax error")]
        with pytest.raises(RuntimeError):
            await migrate(pool)
        tx.rollback.assert_awaited_once()
        tx.commit.assert_not_awaited()


class TestMemoryStore:
    """Tests for the in-memory backend."""

    async def test_duplicate_email(self, keys):
        store = MemoryStore()
        async with store.transaction() as session:
            await session.insert_user(_account(keys))
        with pytest.raises(ConflictError):
            async with store.transaction() as session:
                await session.insert_user(_account(keys))
        assert len(store.users) == 1

    async def test_reads_hide_wrapped_key(self, keys):
        store = MemoryStore()
        account = _account(keys)
        async with store.transaction() as session:
            await session.insert_user(account)
            assert (await session.get_user(account.id)).wrapped_key is None
            assert await session.get_wrapped_key(account.id) == account.wrapped_key

    async def test_entry_requires_owner(self):
        store = MemoryStore()
        entry = VaultEntry(
            id=str(uuid.uuid4()),
            user_id="nobody",
            title="t",
            type=EntryType.APPLICATION,
            category="General",
            payload=encrypt_bytes(os.urandom(32), b"{}"),
        )
        with pytest.raises(LookupError):
            async with store.transaction() as session:
                await session.insert_entry(entry)
        assert store.entries == {}
