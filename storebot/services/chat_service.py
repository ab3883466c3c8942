import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.models.flow_state import FlowKind
from storebot.schemas.states import ChatState
from storebot.schemas.telegram import Message
from storebot.services.admin_service import AdminRegistry
from storebot.services.store import FlowStore
from storebot.services.telegram_client import TelegramClient
from storebot.services.user_service import UserService
from storebot.exceptions import FlowConflict, ValidationError
from storebot.utils import keyboards, messages

logger = logging.getLogger(__name__)

class ChatService:
    """Pairs a client with one admin from the pool and relays messages between them."""

    def __init__(self, db: AsyncSession, telegram: TelegramClient, admins: AdminRegistry):
        self.db = db
        self.telegram = telegram
        self.admins = admins
        self.store = FlowStore(db)
        self.user_service = UserService(db)

    async def request_admin(self, client_id: str, username: Optional[str] = None):
        if await self.store.get(client_id, FlowKind.CHAT):
            await self.telegram.send_message(client_id, "You are already chatting with an admin. Send /stop to close that chat.")
            return
        transfer = await self.store.get(client_id, FlowKind.TRANSFER)
        if transfer:
            await self.telegram.send_message(
                client_id,
                "You cannot call an admin while a transfer is open. Finish or cancel the transfer and call again.",
                reply_to_message_id=transfer.message_id,
            )
            return
        if self.admins.is_admin(client_id):
            await self.telegram.send_message(client_id, "An admin cannot call an admin!")
            return
        if await self.store.has_any(client_id):
            raise FlowConflict()

        # The request exists before any admin sees an Accept button
        if not await self.store.create_if_absent(client_id, ChatState(user_id=None, username=username)):
            logger.info(f"Duplicate chat request from {client_id}")
            return

        admin_messages = {}
        for admin_id in self.admins:
            message_id = await self.telegram.send_message(
                admin_id,
                messages.chat_request(client_id, username),
                reply_markup=keyboards.accept_chat_keyboard(client_id),
            )
            if message_id:
                admin_messages[admin_id] = message_id
        await self._store_admin_messages(client_id, admin_messages)
        await self.telegram.send_message(client_id, "Wait until an admin accepts the chat. You will be notified.")

    async def _store_admin_messages(self, client_id: str, admin_messages: dict, attempts: int = 3):
        # An admin may accept while the notifications go out; keep whatever pairing they wrote
        for _ in range(attempts):
            state, version = await self.store.get_versioned(client_id, FlowKind.CHAT)
            if state is None:
                return
            state.admin_messages = admin_messages
            if await self.store.compare_and_set(client_id, state, version):
                return
        logger.warning(f"Could not record admin messages for chat request {client_id}")

    async def accept(self, acceptor_id: str, client_id: str, callback_message_id: Optional[int] = None) -> Optional[str]:
        """Returns an alert text for the callback answer, or None."""
        if not self.admins.is_admin(acceptor_id):
            return "You are not an admin."

        client_state, version = await self.store.get_versioned(client_id, FlowKind.CHAT)
        if not client_state:
            await self.telegram.send_message(acceptor_id, "This chat request is no longer active.")
            return None

        if await self.store.get(acceptor_id, FlowKind.CHAT):
            return "You are already in a chat, finish it first!\n/stop"

        if client_state.paired:
            if callback_message_id:
                await self.telegram.edit_message_text(acceptor_id, callback_message_id, "Another admin already accepted this chat.")
            return None

        # Both halves go in one transaction; the client half only if still unassigned
        acceptor_state = ChatState(user_id=client_id, admin_messages=client_state.admin_messages)
        if not await self.store.create_if_absent(acceptor_id, acceptor_state, commit=False):
            return "You are already in a chat, finish it first!\n/stop"
        client_state.user_id = acceptor_id
        if not await self.store.compare_and_set(client_id, client_state, version, commit=False):
            await self.db.rollback()
            logger.info(f"Chat {client_id} was taken before {acceptor_id} could accept it")
            if callback_message_id:
                await self.telegram.edit_message_text(acceptor_id, callback_message_id, "Another admin already accepted this chat.")
            return None
        await self.db.commit()
        logger.info(f"Admin {acceptor_id} paired with {client_id}")

        if client_state.admin_messages:
            for admin_id, message_id in client_state.admin_messages.items():
                markup = keyboards.paired_chat_keyboard(client_id) if admin_id == acceptor_id else None
                await self.telegram.edit_message_text(
                    admin_id, message_id, messages.chat_paired(acceptor_id, client_id), reply_markup=markup
                )
                if admin_id == acceptor_id:
                    await self.telegram.pin_chat_message(acceptor_id, message_id)
        elif callback_message_id:
            await self.telegram.edit_message_text(acceptor_id, callback_message_id, messages.CHAT_ACCEPTED)

        await self.telegram.send_message(client_id, messages.CHAT_ACCEPTED)
        return None

    async def start_call(self, admin_id: str):
        """/cagyr: an admin opens a chat with a user by id."""
        if await self.store.get(admin_id, FlowKind.CHAT):
            await self.telegram.send_message(admin_id, "You are already in a chat. Send /stop to close it first.")
            return
        if not self.admins.is_admin(admin_id):
            await self.telegram.send_message(admin_id, "Only admins can use this command!")
            return
        if await self.store.has_any(admin_id):
            raise FlowConflict()
        await self.store.put(admin_id, ChatState(user_id=None, calling=True))
        await self.telegram.send_message(admin_id, "Send the user ID.")

    async def call_target(self, admin_id: str, text: str):
        """Text received while an admin's call is waiting for a target id."""
        if text == "/stop":
            await self.stop(admin_id)
            return
        target_id = text.strip()
        if not target_id.isdigit():
            raise ValidationError("A user ID is a number. Send /cagyr to try again.")
        if target_id == admin_id:
            raise ValidationError("You cannot chat with yourself. Send /cagyr to try again.")
        await self.user_service.require_user(target_id)
        if await self.store.get(target_id, FlowKind.CHAT):
            raise FlowConflict("The user is already in a chat. Send /cagyr to try again later.")
        if await self.store.get(target_id, FlowKind.TRANSFER):
            raise FlowConflict("The user has an open transfer. Send /cagyr to try again later.")

        calling, version = await self.store.get_versioned(admin_id, FlowKind.CHAT)
        if not await self.store.create_if_absent(target_id, ChatState(user_id=admin_id), commit=False):
            raise FlowConflict("The user is already in a chat. Send /cagyr to try again later.")
        if not await self.store.compare_and_set(admin_id, ChatState(user_id=target_id), version, commit=False):
            await self.db.rollback()
            raise FlowConflict()
        await self.db.commit()
        logger.info(f"Admin {admin_id} opened a chat with {target_id}")

        await self.telegram.send_message(admin_id, f"Chat with {messages.user_link(target_id)} opened. {messages.CHAT_ACCEPTED}")
        await self.telegram.send_message(target_id, f"An admin opened a chat with you. {messages.CHAT_ACCEPTED}")

    async def relay(self, from_id: str, state: ChatState, message: Message):
        other_id = state.user_id
        other_state = await self.store.get(other_id, FlowKind.CHAT)
        if not other_state or other_state.user_id != from_id:
            # Torn pair: the other half is gone or points elsewhere
            logger.warning(f"Chat {from_id} -> {other_id} has no matching half, closing")
            await self.store.delete(from_id, FlowKind.CHAT)
            await self.telegram.send_message(from_id, messages.CHAT_ENDED)
            return
        await self.telegram.copy_message(other_id, from_id, message.message_id)

    async def stop(self, user_id: str):
        state = await self.store.get(user_id, FlowKind.CHAT)
        if not state:
            logger.info(f"/stop from {user_id} without an active chat")
            return

        other_id = state.user_id
        await self.telegram.send_message(user_id, messages.CHAT_ENDED)
        if other_id is not None:
            await self.telegram.send_message(other_id, f"<blockquote>bot</blockquote> {messages.CHAT_ENDED}")

        text = messages.chat_finished(user_id, other_id, self.admins.is_admin(user_id))
        for admin_id, message_id in state.admin_messages.items():
            await self.telegram.edit_message_text(admin_id, message_id, text)
            if admin_id in (user_id, other_id):
                await self.telegram.unpin_chat_message(admin_id, message_id)

        # Both keys unconditionally; either half may already be missing
        await self.store.delete(user_id, FlowKind.CHAT, commit=False)
        if other_id is not None:
            other_state = await self.store.get(other_id, FlowKind.CHAT)
            if other_state is None or other_state.user_id == user_id:
                await self.store.delete(other_id, FlowKind.CHAT, commit=False)
        await self.db.commit()
        logger.info(f"Chat {user_id} <-> {other_id} ended")
