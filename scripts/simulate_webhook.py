import asyncio
import itertools
import sys
import os

# Ensure storebot is in path
sys.path.append(os.getcwd())

from storebot.config import get_settings
from storebot.database import AsyncSessionLocal, init_models
from storebot.schemas.telegram import Update
from storebot.services.admin_service import AdminRegistry
from storebot.services.chatbot_service import ChatbotService
from storebot.services.telegram_client import TelegramClient

class ConsoleTelegram(TelegramClient):
    """Prints Bot API calls instead of sending them."""

    def __init__(self):
        super().__init__("SIMULATOR")
        self._ids = itertools.count(1000)

    async def call(self, method, **payload):
        payload = {k: v for k, v in payload.items() if v is not None}
        text = payload.pop("text", "")
        print(f"Bot [{method} -> {payload.pop('chat_id', '?')}]: {text} {payload or ''}")
        if method in ("sendMessage", "copyMessage"):
            return {"message_id": next(self._ids)}
        return True

async def simulate_chat():
    print("--- Store Bot Simulator ---")
    print("Type a message and press Enter. 'press <data>' taps a button, 'as <id>' switches user, 'quit' exits.")

    await init_models()
    admins = AdminRegistry(get_settings().admin_ids)
    telegram = ConsoleTelegram()
    user_id = int(next(iter(admins), "100"))
    update_ids = itertools.count(1)
    print(f"Simulating user: {user_id}")

    while True:
        user_input = input(f"You ({user_id}): ").strip()
        if user_input.lower() in ["quit", "exit"]:
            break
        if user_input.startswith("as "):
            user_id = int(user_input[3:])
            continue

        sender = {"id": user_id, "first_name": "Simulator"}
        if user_input.startswith("press "):
            update = {"callback_query": {"id": str(user_id), "from": sender, "data": user_input[6:]}}
        else:
            update = {
                "message": {
                    "message_id": next(update_ids),
                    "from": sender,
                    "chat": {"id": user_id, "type": "private"},
                    "text": user_input,
                }
            }

        async with AsyncSessionLocal() as db:
            service = ChatbotService(db, telegram, admins)
            try:
                await service.handle_update(Update.model_validate({"update_id": next(update_ids), **update}))
            except Exception as e:
                print(f"Error: {e}")
                import traceback
                traceback.print_exc()

if __name__ == "__main__":
    try:
        asyncio.run(simulate_chat())
    except KeyboardInterrupt:
        print("\nExiting simulator.")
