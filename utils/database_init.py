import os
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

LOGGER = logging.getLogger(__name__)

# Columns added after the first schema revision; applied with ALTER TABLE
# when an older database is opened.
_LATE_COLUMNS = (
    ("tags", "TEXT"),
    ("description", "TEXT"),
    ("is_public", "INTEGER NOT NULL DEFAULT 1"),
    ("thumbnail", "BLOB"),
    ("tg_message_id", "INTEGER"),
    ("tg_file_id", "TEXT"),
    ("tg_file_path", "TEXT"),
    ("tg_endpoint", "TEXT"),
    ("tg_field_name", "TEXT"),
    ("tg_file_name", "TEXT"),
)

# Boolean columns that older revisions stored as 'true'/'false' strings.
_BOOLEAN_COLUMNS = ("is_deleted", "is_public")


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite database holding image metadata.

    - The database file is located at: <database_dir>/app.db, where
      `database_dir` defaults to the DATABASE_DIR environment variable.
    - A RuntimeError is raised if the directory is missing or invalid
      (not a directory and cannot be created).
    - On the first call to `ensure_database()` for a given instance:
        * The existing database file is deleted when `reset=True`.
        * The `img` table is created, missing columns are added and legacy
          boolean encodings are rewritten to 0/1.
    - Subsequent calls to `ensure_database()` on the same instance are no-ops,
      so it is safe for `connection()` to call it.
    """

    def __init__(self, database_dir: Optional[Path | str] = None, reset: bool = False) -> None:
        env_dir = str(database_dir) if database_dir is not None else os.getenv("DATABASE_DIR")

        if env_dir is None or not env_dir.strip():
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )

        db_dir = Path(env_dir).expanduser()

        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"DATABASE_DIR={env_dir!r} points to a file, not a directory "
                f"({db_dir}). Please set DATABASE_DIR to a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = self.db_dir / "app.db"
        self.reset = reset

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def ensure_database(self) -> None:
        """
        Ensure the SQLite schema exists at `self.db_path`.

        Subsequent calls on the same instance are no-ops.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            if self.reset and self.db_path.exists():
                try:
                    self.db_path.unlink()
                except Exception as exc:
                    raise RuntimeError(
                        f"Failed to delete existing database at {self.db_path}"
                    ) from exc

            max_attempts = 3
            for attempt in range(1, max_attempts + 1):
                try:
                    async with aiosqlite.connect(self.db_path) as db:
                        await self._apply_schema(db)
                        await db.commit()
                    break
                except FileNotFoundError:
                    # On some platforms a transient missing file error may occur; retry a few times.
                    if attempt >= max_attempts:
                        raise
                    await asyncio.sleep(0.1 * attempt)

            LOGGER.info("Image database ready at %s", self.db_path)
            self._initialized = True

    @staticmethod
    async def _apply_schema(db: aiosqlite.Connection) -> None:
        await db.execute("PRAGMA journal_mode=WAL;")
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS img (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                original_name TEXT NOT NULL,
                url TEXT NOT NULL,
                file_path TEXT,
                file_format TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                upload_time REAL NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                deleted_at REAL
            )
            """
        )

        cur = await db.execute("PRAGMA table_info(img)")
        cols = await cur.fetchall()
        col_names = {col[1] for col in cols}
        for name, ddl in _LATE_COLUMNS:
            if name not in col_names:
                await db.execute(f"ALTER TABLE img ADD COLUMN {name} {ddl}")

        for column in _BOOLEAN_COLUMNS:
            await db.execute(
                f"""
                UPDATE img
                SET {column} = CASE WHEN lower(trim({column})) IN ('true', '1', 'yes') THEN 1 ELSE 0 END
                WHERE typeof({column}) = 'text'
                """
            )

        await db.execute("CREATE INDEX IF NOT EXISTS idx_img_tg_file_id ON img(tg_file_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_img_created_at ON img(created_at)")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The schema is created on the first use via `ensure_database()`.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
