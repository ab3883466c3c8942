from contextlib import asynccontextmanager
from fastapi import FastAPI
from storebot.database import AsyncSessionLocal, init_models
from storebot.routers import webhook
from storebot.services.admin_service import AdminService
from storebot.services.telegram_client import get_telegram
from storebot.utils.logging import setup_logging

logger = setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    async with AsyncSessionLocal() as db:
        await AdminService(db).seed(webhook.get_admin_registry())
    logger.info("Store bot started")
    yield
    await get_telegram().close()

app = FastAPI(title="Store Bot", lifespan=lifespan)

app.include_router(webhook.router)

@app.get("/")
async def root():
    return {"message": "Store Bot API is running"}
