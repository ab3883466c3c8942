import hashlib
import hmac
import logging
import secrets
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from storebot.models.admin import Admin
from storebot.exceptions import UnauthorizedError, ValidationError
from typing import Iterable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000

class AdminRegistry:
    """Fixed, ordered pool of admin Telegram ids."""

    def __init__(self, admin_ids: Iterable):
        self._ids: Tuple[str, ...] = tuple(dict.fromkeys(str(a) for a in admin_ids))

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, user_id) -> bool:
        return self.is_admin(user_id)

    def is_admin(self, user_id) -> bool:
        return user_id is not None and str(user_id) in self._ids

    def require_admin(self, user_id):
        if not self.is_admin(user_id):
            raise UnauthorizedError()

def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"

def verify_password(password: str, hashed: str) -> bool:
    try:
        _, iterations, salt, expected = hashed.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)

class AdminService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_admin(self, tg_id: str) -> Optional[Admin]:
        result = await self.db.execute(select(Admin).filter(Admin.tg_id == str(tg_id)))
        return result.scalars().first()

    async def _get_or_add(self, tg_id: str) -> Admin:
        admin = await self.get_admin(tg_id)
        if not admin:
            admin = Admin(tg_id=str(tg_id), online_status=False)
            self.db.add(admin)
        return admin

    async def seed(self, registry: AdminRegistry):
        """One admin row per allow-listed id."""
        for tg_id in registry:
            await self._get_or_add(tg_id)
        await self.db.commit()

    async def set_online(self, tg_id: str, online: bool) -> Admin:
        admin = await self._get_or_add(tg_id)
        admin.online_status = online
        await self.db.commit()
        await self.db.refresh(admin)
        return admin

    async def register(self, tg_id: str, nick: str, password: str, commit: bool = True) -> Admin:
        nick = (nick or "").strip()
        if not nick or not password:
            raise ValidationError("Nickname and password must not be empty. Send /signup again.")
        admin = await self._get_or_add(tg_id)
        admin.nick = nick
        admin.hashed_password = hash_password(password)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info(f"Admin {tg_id} registered as {nick}")
        return admin
