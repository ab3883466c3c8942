import logging
import secrets
import string
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from storebot.models.user import User
from storebot.exceptions import UserNotFound, ValidationError
from typing import Optional, List

logger = logging.getLogger(__name__)

WAL_NUM_ALPHABET = string.digits + string.ascii_uppercase
WAL_NUM_LENGTH = 8

def generate_wal_num() -> str:
    # Collisions with existing wallet numbers are not checked
    return "".join(secrets.choice(WAL_NUM_ALPHABET) for _ in range(WAL_NUM_LENGTH))

class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).filter(User.id == str(user_id)))
        return result.scalars().first()

    async def require_user(self, user_id: str) -> User:
        user = await self.get_user(user_id)
        if not user:
            raise UserNotFound("User not found. Press /start and try again.")
        return user

    async def get_user_by_wal_num(self, wal_num: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).filter(User.wal_num == wal_num.upper()).order_by(User.created_at)
        )
        return result.scalars().first()

    async def find_user(self, identifier: str) -> User:
        """Resolve a wallet number or a Telegram id to a user."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValidationError("Wallet number is empty. Please start again.")
        user = await self.get_user_by_wal_num(identifier)
        if not user:
            user = await self.get_user(identifier)
        if not user:
            raise UserNotFound(f"No wallet or user found for {identifier}. Please start again.")
        return user

    async def create_user(self, user_id: str) -> User:
        user = User(id=str(user_id), wal_num=generate_wal_num(), sum_tmt=0.0, sum_usdt=0.0)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Created user {user.id} with wallet {user.wal_num}")
        return user

    async def get_or_create_user(self, user_id: str) -> User:
        user = await self.get_user(user_id)
        if not user:
            user = await self.create_user(user_id)
        return user

    async def get_all_users(self) -> List[User]:
        result = await self.db.execute(select(User).order_by(User.created_at))
        return result.scalars().all()

    async def count_users(self) -> int:
        result = await self.db.execute(select(func.count(User.id)))
        return result.scalar_one()
