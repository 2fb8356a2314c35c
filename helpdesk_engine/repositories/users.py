"""User repository"""
from typing import Optional

from ..models import User
from .base import BaseRepository


class UserRepository(BaseRepository):

    async def get(self, user_id: str) -> Optional[User]:
        row = await self.fetch_one(
            "SELECT id, name, email, role, created_at, updated_at FROM users WHERE id = ?",
            (user_id,),
        )
        return User(**row) if row else None

    async def get_by_email(self, email: str) -> Optional[User]:
        row = await self.fetch_one(
            "SELECT id, name, email, role, created_at, updated_at "
            "FROM users WHERE lower(email) = lower(?) "
            "ORDER BY created_at, id LIMIT 1",
            (email,),
        )
        return User(**row) if row else None
