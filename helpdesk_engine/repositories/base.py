"""Repository base

Connection and transaction management on top of aiosqlite.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from ..services.errors import StorageError

logger = logging.getLogger(__name__)


def get_default_db_path() -> str:
    """Default database path.

    HELPDESK_DATA_DIR wins, otherwise data/helpdesk.db under the project root.
    """
    data_dir = os.environ.get("HELPDESK_DATA_DIR")
    if data_dir:
        return str(Path(data_dir) / "helpdesk.db")
    project_root = Path(__file__).parent.parent.parent
    return str(project_root / "data" / "helpdesk.db")


def to_db(value: Any) -> Any:
    """Convert a Python value to what gets bound into a statement."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


class BaseRepository:
    """Base repository

    Opens one connection per operation. Connections run in autocommit mode;
    write paths open explicit transactions through transaction().
    """

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = get_default_db_path()
        self.db_path = db_path

    @asynccontextmanager
    async def connection(self):
        try:
            db = await aiosqlite.connect(self.db_path, isolation_level=None)
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e
        db.row_factory = aiosqlite.Row
        try:
            await db.execute("PRAGMA foreign_keys = ON")
            yield db
        finally:
            await db.close()

    @asynccontextmanager
    async def transaction(self):
        """
        All-or-nothing unit of work.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent writers
        queue on the database rather than interleaving. Any exception rolls
        back; driver errors surface as StorageError.
        """
        async with self.connection() as db:
            try:
                await db.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to begin transaction: {e}") from e

            try:
                yield db
            except BaseException as e:
                await self._rollback(db, e)
                if isinstance(e, aiosqlite.Error):
                    raise StorageError(f"Transaction failed: {e}") from e
                raise

            try:
                await db.execute("COMMIT")
            except aiosqlite.Error as e:
                await self._rollback(db, e)
                raise StorageError(f"Failed to commit transaction: {e}") from e

    async def _rollback(self, db: aiosqlite.Connection, cause: BaseException) -> None:
        logger.warning("Rolling back transaction: %r", cause)
        try:
            await db.execute("ROLLBACK")
        except aiosqlite.Error:
            logger.exception("Failed to roll back transaction")

    async def fetch_one(
        self, sql: str, params: Sequence[Any] = ()
    ) -> Optional[Dict[str, Any]]:
        try:
            async with self.connection() as db:
                cursor = await db.execute(sql, params)
                row = await cursor.fetchone()
                await cursor.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return dict(row) if row else None

    async def fetch_all(
        self, sql: str, params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        try:
            async with self.connection() as db:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
                await cursor.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return [dict(row) for row in rows]
