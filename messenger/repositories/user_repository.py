from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from messenger.models.user import User


class UserRepository:
    """Read access to profiles owned by the identity provider"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, username: str, email: Optional[str] = None, avatar_url: Optional[str] = None,
                     is_verified: bool = False) -> User:
        db_user = User(
            username=username,
            email=email,
            avatar_url=avatar_url,
            is_verified=is_verified
        )
        self.db.add(db_user)
        await self.db.flush()
        return db_user

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def exists(self, user_id: int) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None
