"""
Schema migrations for the PostgreSQL store.

Migrations are applied in order inside one transaction and recorded in
``schema_migrations``; already-applied ids are skipped. An advisory lock
keeps concurrently starting processes from racing each other.
"""
import logging
from typing import Any

logger = logging.getLogger("navigator.vault")

_MIGRATION_LOCK_ID = 7_340_112

_CREATE_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  id text PRIMARY KEY,
  applied_at timestamptz NOT NULL DEFAULT now()
)
"""

_MIGRATIONS = [
    ("001_initial", """
CREATE TABLE IF NOT EXISTS app_user (
  id uuid PRIMARY KEY,
  email text UNIQUE NOT NULL,
  password_hash text NOT NULL,

  key_ciphertext text NOT NULL,
  key_nonce text NOT NULL,
  key_tag text NOT NULL,
  key_alg text NOT NULL DEFAULT 'aes-256-gcm',

  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS vault_item (
  id uuid PRIMARY KEY,
  user_id uuid NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,

  -- plaintext metadata for listing and search
  title text NOT NULL,
  type text NOT NULL,
  category text NOT NULL,

  enc_ciphertext text NOT NULL,
  enc_nonce text NOT NULL,
  enc_tag text NOT NULL,
  enc_alg text NOT NULL DEFAULT 'aes-256-gcm',

  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_vault_item_user ON vault_item(user_id);
CREATE INDEX IF NOT EXISTS idx_vault_item_title ON vault_item(user_id, title);
CREATE INDEX IF NOT EXISTS idx_vault_item_category ON vault_item(user_id, category);
"""),
    ("003_roles", """
ALTER TABLE app_user
  ADD COLUMN IF NOT EXISTS role TEXT NOT NULL DEFAULT 'user';

-- databases upgraded with existing accounts get their oldest account
-- promoted so at least one admin exists
UPDATE app_user
   SET role = 'admin'
 WHERE id = (SELECT id FROM app_user ORDER BY created_at ASC LIMIT 1)
   AND NOT EXISTS (SELECT 1 FROM app_user WHERE role = 'admin');
"""),
]


async def migrate(db_pool: Any) -> list[str]:
    """Apply pending migrations.

    Args:
        db_pool: asyncpg-compatible connection pool.

    Returns:
        Ids of the migrations applied by this call.
    """
    applied = []
    async with db_pool.acquire() as conn:
        tx = conn.transaction()
        await tx.start()
        try:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", _MIGRATION_LOCK_ID)
            await conn.execute(_CREATE_MIGRATIONS_TABLE)
            for migration_id, sql in _MIGRATIONS:
                done = await conn.fetchval(
                    "SELECT 1 FROM schema_migrations WHERE id = $1", migration_id,
                )
                if done:
                    continue
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (id) VALUES ($1)", migration_id,
                )
                applied.append(migration_id)
            await tx.commit()
        except Exception:
            await tx.rollback()
            raise
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))
    return applied
