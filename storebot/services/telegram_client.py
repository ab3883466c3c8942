import logging
import httpx
from functools import lru_cache
from typing import Any, Dict, Optional
from storebot.config import get_settings
from storebot.exceptions import TransportError

logger = logging.getLogger(__name__)

class TelegramClient:
    """
    Thin Bot API client. Calls never raise: a failed call is logged and the
    caller carries on as if it had worked.
    """

    def __init__(self, token: str, api_url: str = "https://api.telegram.org", timeout: float = 10.0):
        self.base_url = f"{api_url.rstrip('/')}/bot{token}/"
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()

    async def _request(self, method: str, payload: Dict[str, Any]) -> Any:
        try:
            response = await self.client.post(method, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"{method} failed: {e}") from e
        if not data.get("ok"):
            raise TransportError(f"{method} rejected: {data.get('description')}")
        return data.get("result")

    async def call(self, method: str, **payload) -> Any:
        payload = {k: v for k, v in payload.items() if v is not None}
        try:
            return await self._request(method, payload)
        except TransportError as e:
            logger.error(f"Telegram API error: {e}")
            return None

    async def send_message(self, chat_id, text: str, reply_markup: dict = None, parse_mode: str = "HTML", reply_to_message_id: int = None) -> Optional[int]:
        result = await self.call(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
            reply_to_message_id=reply_to_message_id,
        )
        return result.get("message_id") if isinstance(result, dict) else None

    async def edit_message_text(self, chat_id, message_id: int, text: str, reply_markup: dict = None, parse_mode: str = "HTML"):
        await self.call(
            "editMessageText",
            chat_id=chat_id,
            message_id=message_id,
            text=text,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )

    async def answer_callback_query(self, callback_query_id: str, text: str = "", show_alert: bool = False):
        await self.call(
            "answerCallbackQuery",
            callback_query_id=callback_query_id,
            text=text or None,
            show_alert=show_alert or None,
        )

    async def pin_chat_message(self, chat_id, message_id: int):
        await self.call("pinChatMessage", chat_id=chat_id, message_id=message_id)

    async def unpin_chat_message(self, chat_id, message_id: int):
        await self.call("unpinChatMessage", chat_id=chat_id, message_id=message_id)

    async def copy_message(self, chat_id, from_chat_id, message_id: int) -> Optional[int]:
        result = await self.call("copyMessage", chat_id=chat_id, from_chat_id=from_chat_id, message_id=message_id)
        return result.get("message_id") if isinstance(result, dict) else None

@lru_cache()
def get_telegram() -> TelegramClient:
    settings = get_settings()
    return TelegramClient(settings.BOT_TOKEN, settings.TELEGRAM_API_URL, settings.TELEGRAM_TIMEOUT)
