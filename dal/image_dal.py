"""Async Data Access Layer for the `img` table.

Provides ImageDAL class with async CRUD, search and stats operations compatible
with `utils.database_init.AsyncDatabaseInitializer`. Boolean columns are
normalized here so callers only ever see Python bools.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from models.image_record import ImageRecord, ImageStats, RemoteLinkage
from utils.database_init import AsyncDatabaseInitializer
from utils.exceptions import NotFoundError, PersistenceError

METADATA_FIELDS = ("name", "tags", "description", "is_public")
LINKAGE_FIELDS = ("tg_message_id", "tg_file_id", "tg_file_path", "tg_endpoint", "tg_field_name", "tg_file_name")


def to_bool(value: Any, default: bool = False) -> bool:
    """Normalize the 0/1 and 'true'/'false' encodings found in stored rows."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ImageDAL:
    """Data access layer for image records.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    _COLUMNS = (
        "id",
        "name",
        "original_name",
        "url",
        "file_path",
        "file_format",
        "file_size",
        "upload_time",
        "created_at",
        "updated_at",
        "is_deleted",
        "deleted_at",
        "tags",
        "description",
        "is_public",
        "tg_message_id",
        "tg_file_id",
        "tg_file_path",
        "tg_endpoint",
        "tg_field_name",
        "tg_file_name",
    )
    # Reads carry a presence flag; the blob itself is only read by `get_thumbnail`.
    _COLUMN_LIST = ", ".join(_COLUMNS) + ", thumbnail IS NOT NULL"
    _INSERT_COLUMNS = _COLUMNS[1:] + ("thumbnail",)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def insert(self, record: ImageRecord) -> int:
        """Insert a new live row and return its id.

        Args:
            record: ImageRecord with `id=None`. Timestamps default to now,
                `is_public` to True and `is_deleted` to False.

        Raises:
            PersistenceError: If the write fails or yields no row id.
        """
        now = time.time()
        values = {
            "name": record.name,
            "original_name": record.original_name,
            "url": record.url,
            "file_path": record.file_path,
            "file_format": record.file_format,
            "file_size": int(record.file_size),
            "upload_time": record.upload_time or now,
            "created_at": record.created_at or now,
            "updated_at": record.updated_at or now,
            "is_deleted": 0,
            "deleted_at": None,
            "tags": record.tags,
            "description": record.description,
            "is_public": 1 if to_bool(record.is_public, default=True) else 0,
            "tg_message_id": record.tg_message_id,
            "tg_file_id": record.tg_file_id,
            "tg_file_path": record.tg_file_path,
            "tg_endpoint": record.tg_endpoint,
            "tg_field_name": record.tg_field_name,
            "tg_file_name": record.tg_file_name,
            "thumbnail": record.thumbnail,
        }
        placeholders = ", ".join("?" for _ in self._INSERT_COLUMNS)
        sql = f"INSERT INTO img ({', '.join(self._INSERT_COLUMNS)}) VALUES ({placeholders})"

        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(sql, tuple(values[col] for col in self._INSERT_COLUMNS))
                await conn.commit()
                new_id = cur.lastrowid
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to insert image: {exc}") from exc

        if not new_id:
            raise PersistenceError("Failed to insert image: no row id returned")
        return int(new_id)

    async def get_by_id(self, image_id: int) -> Optional[ImageRecord]:
        """Return the live record for `image_id`, or None."""
        return await self._fetch_one("id = ? AND is_deleted = 0", (image_id,))

    async def get_by_id_any(self, image_id: int) -> Optional[ImageRecord]:
        """Return the record for `image_id` even when it is soft-deleted."""
        return await self._fetch_one("id = ?", (image_id,))

    async def get_by_remote_file_id(self, file_id: str) -> Optional[ImageRecord]:
        """Return the live record holding the remote file handle `file_id`, or None."""
        return await self._fetch_one("tg_file_id = ? AND is_deleted = 0", (file_id,))

    async def list_public(self, page: int = 1, limit: int = 20) -> List[ImageRecord]:
        """List live public records, newest first."""
        return await self._fetch_page("is_public = 1 AND is_deleted = 0", (), page, limit)

    async def list_all(self, page: int = 1, limit: int = 20, include_deleted: bool = False) -> List[ImageRecord]:
        """List records regardless of visibility, newest first.

        Soft-deleted rows are only returned when `include_deleted` is set.
        """
        where = "1 = 1" if include_deleted else "is_deleted = 0"
        return await self._fetch_page(where, (), page, limit)

    async def search(self, query: str, page: int = 1, limit: int = 20, public_only: bool = True) -> List[ImageRecord]:
        """Case-insensitive substring search over name, tags and description."""
        pattern = f"%{_escape_like(query.lower())}%"
        where = (
            "(lower(name) LIKE ? ESCAPE '\\' OR lower(tags) LIKE ? ESCAPE '\\' "
            "OR lower(description) LIKE ? ESCAPE '\\') AND is_deleted = 0"
        )
        if public_only:
            where += " AND is_public = 1"
        return await self._fetch_page(where, (pattern, pattern, pattern), page, limit)

    async def update(self, image_id: int, updates: Dict[str, Any]) -> bool:
        """Update name/tags/description/is_public of a live row.

        Unknown keys and None values are ignored; with nothing to change this
        is a no-op. A missing id is not an error. Returns True if a row changed.
        """
        return await self._update_fields(image_id, updates, METADATA_FIELDS)

    async def update_remote_linkage(self, image_id: int, linkage: RemoteLinkage | Dict[str, Any]) -> bool:
        """Patch the remote linkage fields of a live row. Returns True if a row changed."""
        updates = linkage.as_updates() if isinstance(linkage, RemoteLinkage) else linkage
        return await self._update_fields(image_id, updates, LINKAGE_FIELDS)

    async def soft_delete(self, image_id: int) -> None:
        """Mark a live record as deleted.

        Raises:
            NotFoundError: If no live record has this id, including one that
                was already soft-deleted.
        """
        now = time.time()
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "UPDATE img SET is_deleted = 1, deleted_at = ?, updated_at = ? WHERE id = ? AND is_deleted = 0",
                (now, now, image_id),
            )
            await conn.commit()
            changed = cur.rowcount
        if not changed:
            raise NotFoundError(f"Image {image_id} not found")

    async def stats(self) -> ImageStats:
        """Return counts and total size; the four reads run concurrently."""
        total, public, deleted, total_size = await asyncio.gather(
            self._scalar("SELECT COUNT(*) FROM img"),
            self._scalar("SELECT COUNT(*) FROM img WHERE is_public = 1 AND is_deleted = 0"),
            self._scalar("SELECT COUNT(*) FROM img WHERE is_deleted = 1"),
            self._scalar("SELECT SUM(file_size) FROM img WHERE is_deleted = 0"),
        )
        return ImageStats(total=total, public=public, deleted=deleted, total_size=total_size)

    async def get_thumbnail(self, image_id: int) -> Optional[bytes]:
        """Return the preview bytes of a live record, or None."""
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT thumbnail FROM img WHERE id = ? AND is_deleted = 0", (image_id,))
            row = await cur.fetchone()
            return row[0] if row and row[0] else None

    async def _update_fields(self, image_id: int, updates: Dict[str, Any], allowed: Sequence[str]) -> bool:
        changes = {col: updates[col] for col in allowed if updates.get(col) is not None}
        if not changes:
            return False
        if "is_public" in changes:
            changes["is_public"] = 1 if to_bool(changes["is_public"]) else 0

        assignments = [f"{col} = ?" for col in changes]
        assignments.append("updated_at = ?")
        params: List[Any] = list(changes.values())
        params.extend([time.time(), image_id])
        sql = f"UPDATE img SET {', '.join(assignments)} WHERE id = ? AND is_deleted = 0"

        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(sql, tuple(params))
                await conn.commit()
                return cur.rowcount > 0
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to update image {image_id}: {exc}") from exc

    async def _fetch_one(self, where: str, params: tuple) -> Optional[ImageRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(f"SELECT {self._COLUMN_LIST} FROM img WHERE {where} LIMIT 1", params)
            row = await cur.fetchone()
            return self._row_to_record(row) if row else None

    async def _fetch_page(self, where: str, params: tuple, page: int, limit: int) -> List[ImageRecord]:
        page = max(int(page), 1)
        limit = max(int(limit), 1)
        offset = (page - 1) * limit
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM img WHERE {where} "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + (limit, offset),
            )
            rows = await cur.fetchall()
            return [self._row_to_record(r) for r in rows]

    async def _scalar(self, sql: str) -> int:
        async with self._db.connection() as conn:
            cur = await conn.execute(sql)
            row = await cur.fetchone()
            return int(row[0]) if row and row[0] is not None else 0

    @classmethod
    def _row_to_record(cls, row: Sequence[object]) -> ImageRecord:
        """Convert a DB row tuple into an ImageRecord."""
        data = dict(zip(cls._COLUMNS, row))
        data["has_thumbnail"] = bool(row[len(cls._COLUMNS)])
        data["is_deleted"] = to_bool(data["is_deleted"])
        data["is_public"] = to_bool(data["is_public"], default=True)
        return ImageRecord(**data)
