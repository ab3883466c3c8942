from fastapi import APIRouter, Request, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.database import get_db
from storebot.schemas.telegram import Update
from storebot.services.admin_service import AdminRegistry
from storebot.services.chatbot_service import ChatbotService
from storebot.services.telegram_client import TelegramClient, get_telegram
from storebot.config import get_settings
from functools import lru_cache
import hmac
import logging

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

@lru_cache()
def get_admin_registry() -> AdminRegistry:
    return AdminRegistry(get_settings().admin_ids)

async def validate_telegram_request(request: Request):
    if not settings.WEBHOOK_SECRET_TOKEN:
        return
    token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not hmac.compare_digest(token, settings.WEBHOOK_SECRET_TOKEN):
        logger.warning("Invalid Telegram secret token")
        if settings.ENVIRONMENT == "production":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid secret token")

@router.post(f"/{settings.SECRET_PATH.strip('/')}", dependencies=[Depends(validate_telegram_request)])
async def telegram_webhook(
    update: Update,
    db: AsyncSession = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
    admins: AdminRegistry = Depends(get_admin_registry),
):
    chatbot = ChatbotService(db, telegram, admins)
    try:
        await chatbot.handle_update(update)
    except Exception as e:
        # Always 200, Telegram redelivers otherwise
        logger.exception(f"Unhandled error for update {update.update_id}: {e}")
    return {"ok": True}
