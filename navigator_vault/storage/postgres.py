"""
PostgreSQL identity and vault store on top of an asyncpg pool.

Every operation runs inside ``PostgresStore.transaction()``; the
transaction commits on normal exit and rolls back on any exception,
including task cancellation. Queries are bounded by the pool's
``command_timeout``.
"""
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..exceptions import ConfigurationError, ConflictError
from ..models import EncryptedBlob, Role, UserAccount, VaultEntry
from .migrations import migrate

logger = logging.getLogger("navigator.vault")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_LOCK_ACCOUNTS = "LOCK TABLE app_user IN SHARE ROW EXCLUSIVE MODE"

_COUNT_USERS = "SELECT COUNT(*)::int AS count FROM app_user"

# Row locks serialize concurrent demotions against each other.
_LOCK_ADMINS = """
SELECT id FROM app_user
WHERE role = 'admin'
ORDER BY id
FOR UPDATE
"""

_USER_COLUMNS = """
id::text AS id, email, password_hash, role, created_at, updated_at
"""

_SELECT_USER = f"SELECT {_USER_COLUMNS} FROM app_user WHERE id = $1"

_SELECT_USER_BY_EMAIL = f"SELECT {_USER_COLUMNS} FROM app_user WHERE email = $1"

_SELECT_USERS = f"SELECT {_USER_COLUMNS} FROM app_user ORDER BY created_at ASC"

_SELECT_ROLE = "SELECT role FROM app_user WHERE id = $1"

_SELECT_WRAPPED_KEY = """
SELECT key_ciphertext, key_nonce, key_tag, key_alg
FROM app_user
WHERE id = $1
"""

_INSERT_USER = """
INSERT INTO app_user (id, email, password_hash, role,
                      key_ciphertext, key_nonce, key_tag, key_alg)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
RETURNING created_at, updated_at
"""

_UPDATE_ROLE = """
UPDATE app_user SET role = $1, updated_at = NOW()
WHERE id = $2
"""

_UPDATE_PASSWORD = """
UPDATE app_user SET password_hash = $1, updated_at = NOW()
WHERE id = $2
"""

_UPDATE_PASSWORD_BY_EMAIL = """
UPDATE app_user SET password_hash = $1, updated_at = NOW()
WHERE email = $2
"""

_DELETE_USER = "DELETE FROM app_user WHERE id = $1 RETURNING id"

_ENTRY_COLUMNS = """
id::text AS id, user_id::text AS user_id, title, type, category,
enc_ciphertext, enc_nonce, enc_tag, enc_alg, created_at, updated_at
"""

_SELECT_ENTRIES = f"""
SELECT {_ENTRY_COLUMNS}
FROM vault_item
WHERE user_id = $1
ORDER BY updated_at DESC
"""

_SELECT_ENTRY = f"""
SELECT {_ENTRY_COLUMNS}
FROM vault_item
WHERE id = $1 AND user_id = $2
"""

_INSERT_ENTRY = """
INSERT INTO vault_item (id, user_id, title, type, category,
                        enc_ciphertext, enc_nonce, enc_tag, enc_alg)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
RETURNING created_at, updated_at
"""

_UPDATE_ENTRY = """
UPDATE vault_item
SET title = $1, type = $2, category = $3,
    enc_ciphertext = $4, enc_nonce = $5, enc_tag = $6, enc_alg = $7,
    updated_at = NOW()
WHERE id = $8 AND user_id = $9
RETURNING created_at, updated_at
"""

_DELETE_ENTRY = "DELETE FROM vault_item WHERE id = $1 AND user_id = $2 RETURNING id"


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    """Parse an identifier; malformed ids simply match nothing."""
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``UPDATE 1``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _user_from_row(row: Any) -> UserAccount:
    return UserAccount(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role.normalize(row["role"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _entry_from_row(row: Any) -> VaultEntry:
    return VaultEntry(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        type=row["type"],
        category=row["category"],
        payload=EncryptedBlob.from_record({
            "ciphertext": row["enc_ciphertext"],
            "nonce": row["enc_nonce"],
            "tag": row["enc_tag"],
            "alg": row["enc_alg"],
        }),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSession:
    """Queries bound to one connection inside an open transaction."""

    def __init__(self, conn: Any):
        self._conn = conn

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def lock_accounts(self) -> None:
        await self._conn.execute(_LOCK_ACCOUNTS)

    async def count_users(self) -> int:
        return int(await self._conn.fetchval(_COUNT_USERS) or 0)

    async def count_admins(self) -> int:
        rows = await self._conn.fetch(_LOCK_ADMINS)
        return len(rows)

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        row = await self._conn.fetchrow(_SELECT_USER, uid)
        return _user_from_row(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        row = await self._conn.fetchrow(_SELECT_USER_BY_EMAIL, email)
        return _user_from_row(row) if row else None

    async def get_role(self, user_id: str) -> Optional[Role]:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        row = await self._conn.fetchrow(_SELECT_ROLE, uid)
        return Role.normalize(row["role"]) if row else None

    async def get_wrapped_key(self, user_id: str) -> Optional[EncryptedBlob]:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        row = await self._conn.fetchrow(_SELECT_WRAPPED_KEY, uid)
        if row is None:
            return None
        return EncryptedBlob.from_record({
            "ciphertext": row["key_ciphertext"],
            "nonce": row["key_nonce"],
            "tag": row["key_tag"],
            "alg": row["key_alg"],
        })

    async def list_users(self) -> list[UserAccount]:
        rows = await self._conn.fetch(_SELECT_USERS)
        return [_user_from_row(row) for row in rows]

    async def insert_user(self, account: UserAccount) -> UserAccount:
        record = account.wrapped_key.to_record()
        try:
            row = await self._conn.fetchrow(
                _INSERT_USER,
                _as_uuid(account.id), account.email, account.password_hash,
                account.role.value, record["ciphertext"], record["nonce"],
                record["tag"], record["alg"],
            )
        except asyncpg.UniqueViolationError as err:
            raise ConflictError() from err
        return account.model_copy(update={
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    async def update_role(self, user_id: str, role: Role) -> bool:
        uid = _as_uuid(user_id)
        if uid is None:
            return False
        status = await self._conn.execute(_UPDATE_ROLE, role.value, uid)
        return _affected(status) > 0

    async def update_password(self, user_id: str, password_hash: str) -> bool:
        uid = _as_uuid(user_id)
        if uid is None:
            return False
        status = await self._conn.execute(_UPDATE_PASSWORD, password_hash, uid)
        return _affected(status) > 0

    async def update_password_by_email(self, email: str, password_hash: str) -> bool:
        status = await self._conn.execute(
            _UPDATE_PASSWORD_BY_EMAIL, password_hash, email,
        )
        return _affected(status) > 0

    async def delete_user(self, user_id: str) -> bool:
        uid = _as_uuid(user_id)
        if uid is None:
            return False
        return await self._conn.fetchrow(_DELETE_USER, uid) is not None

    # ------------------------------------------------------------------
    # Vault entries
    # ------------------------------------------------------------------

    async def list_entries(self, owner_id: str) -> list[VaultEntry]:
        uid = _as_uuid(owner_id)
        if uid is None:
            return []
        rows = await self._conn.fetch(_SELECT_ENTRIES, uid)
        return [_entry_from_row(row) for row in rows]

    async def get_entry(
        self, owner_id: str, entry_id: str, for_update: bool = False,
    ) -> Optional[VaultEntry]:
        uid, eid = _as_uuid(owner_id), _as_uuid(entry_id)
        if uid is None or eid is None:
            return None
        sql = _SELECT_ENTRY + " FOR UPDATE" if for_update else _SELECT_ENTRY
        row = await self._conn.fetchrow(sql, eid, uid)
        return _entry_from_row(row) if row else None

    async def insert_entry(self, entry: VaultEntry) -> VaultEntry:
        record = entry.payload.to_record()
        row = await self._conn.fetchrow(
            _INSERT_ENTRY,
            _as_uuid(entry.id), _as_uuid(entry.user_id), entry.title,
            entry.type.value, entry.category, record["ciphertext"],
            record["nonce"], record["tag"], record["alg"],
        )
        return entry.model_copy(update={
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    async def update_entry(self, entry: VaultEntry) -> Optional[VaultEntry]:
        record = entry.payload.to_record()
        row = await self._conn.fetchrow(
            _UPDATE_ENTRY,
            entry.title, entry.type.value, entry.category,
            record["ciphertext"], record["nonce"], record["tag"], record["alg"],
            _as_uuid(entry.id), _as_uuid(entry.user_id),
        )
        if row is None:
            return None
        return entry.model_copy(update={
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        uid, eid = _as_uuid(owner_id), _as_uuid(entry_id)
        if uid is None or eid is None:
            return False
        return await self._conn.fetchrow(_DELETE_ENTRY, eid, uid) is not None


class PostgresStore:
    """Identity and vault store backed by an asyncpg-compatible pool."""

    backend = "postgres"

    def __init__(self, pool: Any, acquire_timeout: Optional[float] = None):
        self._pool = pool
        self._acquire_timeout = acquire_timeout

    @classmethod
    async def connect(cls, config: Any) -> "PostgresStore":
        """Create the asyncpg pool described by a VaultConfig.

        Raises:
            ConfigurationError: If no database URL is configured.
        """
        if not config.database_url:
            raise ConfigurationError("Missing required env: DATABASE_URL")
        pool = await asyncpg.create_pool(
            dsn=config.database_url,
            min_size=1,
            max_size=config.pool_size,
            timeout=config.connect_timeout,
            command_timeout=config.query_timeout,
        )
        logger.info("Connected PostgreSQL pool (max_size=%d)", config.pool_size)
        return cls(pool, acquire_timeout=config.connect_timeout)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresSession]:
        async with self._pool.acquire(timeout=self._acquire_timeout) as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                yield PostgresSession(conn)
            except BaseException:
                await tx.rollback()
                raise
            await tx.commit()

    async def migrate(self) -> None:
        await migrate(self._pool)

    async def close(self) -> None:
        await self._pool.close()
