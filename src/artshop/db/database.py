# manages connection to db, bootstraps schema and the admin account
import asyncio
import os.path
from contextlib import asynccontextmanager
from pathlib import Path
from sqlite3 import Row
from typing import Optional

import aiosqlite

from artshop.utils.config import get_settings
from artshop.utils.logger import get_logger
from artshop.utils.security import hash_password

_logger = get_logger(__name__)

# None means the path from settings; tests point this at a temp file
DB_PATH: Optional[str] = None
SCHEMA_SCRIPT = Path(__file__).with_name("schema.sql")

_initialized = False
_init_lock = asyncio.Lock()


def db_path() -> str:
    return DB_PATH or get_settings().db_path


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Applying schema {SCHEMA_SCRIPT.name} to {db_path()}...")
    await conn.executescript(SCHEMA_SCRIPT.read_text(encoding="utf-8"))
    await conn.commit()


async def _seed_admin(conn: aiosqlite.Connection) -> None:
    settings = get_settings()
    cur = await conn.execute(
        "SELECT 1 FROM users WHERE email = ?;", (settings.admin_email,)
    )
    row = await cur.fetchone()
    await cur.close()
    if row is not None:
        return
    _logger.info(f"Seeding admin account {settings.admin_email}")
    password_hash = await asyncio.to_thread(hash_password, settings.admin_password)
    await conn.execute(
        "INSERT INTO users(email, password_hash, name) VALUES (?, ?, 'Admin');",
        (settings.admin_email, password_hash),
    )
    await conn.commit()


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    The first connection of the process creates missing tables and the admin user.
    """
    global _initialized
    if not _initialized:
        parent = os.path.dirname(db_path())
        if parent:
            os.makedirs(parent, exist_ok=True)

    conn = await aiosqlite.connect(db_path())
    conn.row_factory = Row
    await conn.execute("PRAGMA foreign_keys = ON;")

    try:
        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    await _init_db(conn)
                    await _seed_admin(conn)
                    _initialized = True
        yield conn
    finally:
        await conn.close()
