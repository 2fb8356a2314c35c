"""
Helpdesk Engine Repositories

aiosqlite-backed persistence for work items, users and comments.
"""

from .base import BaseRepository, get_default_db_path
from .schema import init_database, table_for, KindTable
from .users import UserRepository
from .work_items import WorkItemRepository

__all__ = [
    "BaseRepository", "get_default_db_path",
    "init_database", "table_for", "KindTable",
    "UserRepository", "WorkItemRepository",
]
