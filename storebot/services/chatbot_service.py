import enum
import logging
from typing import Dict, NamedTuple, Optional
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.config import get_settings
from storebot.models.flow_state import FlowKind
from storebot.schemas.states import BroadcastState, SignupState
from storebot.schemas.telegram import Update, Message, CallbackQuery
from storebot.services.admin_service import AdminRegistry, AdminService
from storebot.services.chat_service import ChatService
from storebot.services.order_flow import OrderFlows
from storebot.services.store import FlowStore
from storebot.services.telegram_client import TelegramClient
from storebot.services.user_service import UserService
from storebot.services.wallet_flow import WalletFlows
from storebot.exceptions import FlowConflict, StoreBotError
from storebot.utils import keyboards, messages
from storebot.utils.validators import parse_callback, parse_order_id

logger = logging.getLogger(__name__)

class ActiveFlowKind(str, enum.Enum):
    REASON = "reason"
    SUMADD = "sumadd"
    TRANSFER = "transfer"
    CHECK = "check"
    CHAT_CALLING = "chat_calling"
    CHAT_PAIRED = "chat_paired"
    SIGNUP = "signup"
    BROADCAST = "broadcast"
    NONE = "none"

class ActiveFlow(NamedTuple):
    kind: ActiveFlowKind
    state: Optional[BaseModel] = None

# Flow state row each active flow lives in, used when aborting
FLOW_STORAGE = {
    ActiveFlowKind.REASON: FlowKind.REASON,
    ActiveFlowKind.SUMADD: FlowKind.SUMADD,
    ActiveFlowKind.TRANSFER: FlowKind.TRANSFER,
    ActiveFlowKind.CHECK: FlowKind.CHECK,
    ActiveFlowKind.CHAT_CALLING: FlowKind.CHAT,
    ActiveFlowKind.SIGNUP: FlowKind.SIGNUP,
    ActiveFlowKind.BROADCAST: FlowKind.BROADCAST,
}

def resolve_active_flow(states: Dict[FlowKind, BaseModel]) -> ActiveFlow:
    """
    Pick the one flow that owns the next text from a user. The order is
    fixed: a pending decline reason always wins, so stray text can never be
    read as, say, a transfer amount. A client still waiting for an admin
    owns nothing, so commands keep working while they wait.
    """
    chat = states.get(FlowKind.CHAT)
    if FlowKind.REASON in states:
        return ActiveFlow(ActiveFlowKind.REASON, states[FlowKind.REASON])
    if FlowKind.SUMADD in states:
        return ActiveFlow(ActiveFlowKind.SUMADD, states[FlowKind.SUMADD])
    if FlowKind.TRANSFER in states:
        return ActiveFlow(ActiveFlowKind.TRANSFER, states[FlowKind.TRANSFER])
    if FlowKind.CHECK in states:
        return ActiveFlow(ActiveFlowKind.CHECK, states[FlowKind.CHECK])
    if chat is not None and chat.calling and not chat.paired:
        return ActiveFlow(ActiveFlowKind.CHAT_CALLING, chat)
    if chat is not None and chat.paired:
        return ActiveFlow(ActiveFlowKind.CHAT_PAIRED, chat)
    if FlowKind.SIGNUP in states:
        return ActiveFlow(ActiveFlowKind.SIGNUP, states[FlowKind.SIGNUP])
    if FlowKind.BROADCAST in states:
        return ActiveFlow(ActiveFlowKind.BROADCAST, states[FlowKind.BROADCAST])
    return ActiveFlow(ActiveFlowKind.NONE)

class ChatbotService:
    def __init__(self, db: AsyncSession, telegram: TelegramClient, admins: AdminRegistry):
        settings = get_settings()
        self.db = db
        self.telegram = telegram
        self.admins = admins
        self.mini_app_url = settings.MINI_APP_URL
        self.edit_command = settings.EDIT_SUM_COMMAND
        self.store = FlowStore(db)
        self.user_service = UserService(db)
        self.admin_service = AdminService(db)
        self.chat = ChatService(db, telegram, admins)
        self.wallet = WalletFlows(db, telegram, admins, self.edit_command)
        self.orders = OrderFlows(db, telegram, admins)

        self.commands = {
            "/start": self.handle_start,
            "/signup": self.handle_signup,
            "/broadcast": self.handle_broadcast,
            "/cagyr": lambda m, u, t: self.chat.start_call(u),
            "/stop": lambda m, u, t: self.chat.stop(u),
            "/on": lambda m, u, t: self.handle_online(u, True),
            "/of": lambda m, u, t: self.handle_online(u, False),
            "/check": lambda m, u, t: self.wallet.start_check(u, m.from_user.username),
            f"/{self.edit_command}": lambda m, u, t: self.wallet.start_sum_add(u, m.from_user.username),
            "/0804": lambda m, u, t: self.wallet.start_transfer(u),
        }
        self.keyboard_labels = {
            keyboards.SHOP_BUTTON: self.handle_shop,
            keyboards.BALANCE_BUTTON: self.handle_balance,
            keyboards.CALL_ADMIN_BUTTON: lambda m, u, t: self.chat.request_admin(u, m.from_user.username),
        }
        self.callbacks = {
            "accept_chat": lambda cb, u, arg: self.chat.accept(u, arg, cb.message.message_id if cb.message else None),
            "sumadd_currency": lambda cb, u, arg: self.wallet.sum_add_currency(u, arg),
            "sumadd_confirm": lambda cb, u, arg: self.wallet.sum_add_confirm(u),
            "sumadd_cancel": lambda cb, u, arg: self.wallet.sum_add_cancel(u),
            "transfer_currency": lambda cb, u, arg: self.wallet.transfer_currency(u, arg),
            "transfer_confirm": lambda cb, u, arg: self.wallet.transfer_confirm(u),
            "transfer_cancel": lambda cb, u, arg: self.wallet.transfer_cancel(u),
            "check_cancel": lambda cb, u, arg: self.wallet.check_cancel(u),
            "broadcast_cancel": lambda cb, u, arg: self.cancel_broadcast(u),
            "order_accept": lambda cb, u, arg: self.orders.accept(u, cb.from_user.first_name, parse_order_id(arg)),
            "order_deliver": lambda cb, u, arg: self.orders.deliver(u, cb.from_user.first_name, parse_order_id(arg)),
            "order_complete": lambda cb, u, arg: self.orders.complete(u, cb.from_user.first_name, parse_order_id(arg)),
            "order_paid": lambda cb, u, arg: self.orders.mark_paid(u, cb.from_user.first_name, parse_order_id(arg)),
            "order_decline": lambda cb, u, arg: self.orders.decline(u, cb.from_user.first_name, parse_order_id(arg)),
            "order_cancel": lambda cb, u, arg: self.orders.client_cancel(u, parse_order_id(arg)),
        }
        # Errors in these callbacks end the flow they belong to
        self.callback_flows = {
            "sumadd_currency": ActiveFlowKind.SUMADD,
            "sumadd_confirm": ActiveFlowKind.SUMADD,
            "transfer_currency": ActiveFlowKind.TRANSFER,
            "transfer_confirm": ActiveFlowKind.TRANSFER,
        }

    async def handle_update(self, update: Update):
        if update.message:
            await self.handle_message(update.message)
        elif update.callback_query:
            await self.handle_callback(update.callback_query)

    async def handle_message(self, message: Message):
        if not message.from_user or message.chat.id != message.from_user.id:
            # Private chats only
            return
        user_id = str(message.from_user.id)
        text = (message.text or "").strip()
        flow = ActiveFlow(ActiveFlowKind.NONE)

        try:
            if message.web_app_data:
                # Shop orders are never input to an open flow
                await self.orders.place_order(user_id, message.web_app_data.data)
            else:
                states = await self.store.all_for_user(user_id)
                flow = resolve_active_flow(states)
                await self.dispatch(message, user_id, text, flow)
        except StoreBotError as e:
            logger.info(f"{type(e).__name__} for {user_id} in {flow.kind.value}: {e.message}")
            await self.db.rollback()
            await self.abort_flow(user_id, flow)
            await self.telegram.send_message(user_id, e.message)
        except Exception as e:
            logger.exception(f"Error handling message from {user_id}: {e}")
            await self.db.rollback()
            await self.telegram.send_message(user_id, messages.GENERIC_ERROR)

    async def dispatch(self, message: Message, user_id: str, text: str, flow: ActiveFlow):
        if flow.kind == ActiveFlowKind.REASON:
            await self.orders.finish_reason(user_id, message.from_user.first_name, flow.state, text)
        elif flow.kind == ActiveFlowKind.SUMADD:
            await self.wallet.sum_add_input(user_id, flow.state, text)
        elif flow.kind == ActiveFlowKind.TRANSFER:
            await self.wallet.transfer_input(user_id, flow.state, text)
        elif flow.kind == ActiveFlowKind.CHECK:
            await self.wallet.check_input(user_id, flow.state, text)
        elif flow.kind == ActiveFlowKind.CHAT_CALLING:
            await self.chat.call_target(user_id, text)
        elif flow.kind == ActiveFlowKind.CHAT_PAIRED:
            if text == "/stop":
                await self.chat.stop(user_id)
            else:
                await self.chat.relay(user_id, flow.state, message)
        elif flow.kind == ActiveFlowKind.SIGNUP:
            await self.signup_input(user_id, flow.state, text)
        elif flow.kind == ActiveFlowKind.BROADCAST:
            await self.broadcast_input(user_id, text)
        elif text.startswith("/"):
            command = text.split()[0]
            handler = self.commands.get(command)
            if handler:
                await handler(message, user_id, text)
            else:
                await self.telegram.send_message(user_id, messages.UNKNOWN_COMMAND)
        elif text in self.keyboard_labels:
            await self.keyboard_labels[text](message, user_id, text)
        else:
            await self.telegram.send_message(user_id, messages.UNKNOWN_MESSAGE)

    async def abort_flow(self, user_id: str, flow: ActiveFlow):
        kind = FLOW_STORAGE.get(flow.kind)
        if kind is None or kind == FlowKind.REASON:
            return
        await self.wallet.abort(user_id, kind)

    async def handle_callback(self, callback: CallbackQuery):
        user_id = str(callback.from_user.id)
        action, arg = parse_callback(callback.data)
        handler = self.callbacks.get(action)
        if handler is None:
            await self.telegram.answer_callback_query(callback.id)
            return

        try:
            notice = await handler(callback, user_id, arg)
        except StoreBotError as e:
            logger.info(f"{type(e).__name__} for {user_id} on {action}: {e.message}")
            await self.db.rollback()
            flow_kind = self.callback_flows.get(action)
            if flow_kind and not isinstance(e, FlowConflict):
                await self.abort_flow(user_id, ActiveFlow(flow_kind))
                await self.telegram.send_message(user_id, e.message)
            notice = e.message
        except Exception as e:
            logger.exception(f"Error handling callback {callback.data} from {user_id}: {e}")
            await self.db.rollback()
            notice = messages.GENERIC_ERROR
        await self.telegram.answer_callback_query(callback.id, notice or "", show_alert=bool(notice))

    # --- Commands and keyboard labels ---

    async def handle_start(self, message: Message, user_id: str, text: str):
        parts = text.split(maxsplit=1)
        param = parts[1] if len(parts) > 1 else ""
        await self.user_service.get_or_create_user(user_id)
        if param == "calladmin":
            await self.telegram.send_message(user_id, messages.CALL_ADMIN_TO_TOP_UP, reply_markup=keyboards.main_keyboard())
            return
        await self.telegram.send_message(user_id, messages.WELCOME, reply_markup=keyboards.main_keyboard())

    async def handle_shop(self, message: Message, user_id: str, text: str):
        await self.telegram.send_message(
            user_id, "Press the button below to enter the shop.", reply_markup=keyboards.shop_keyboard(self.mini_app_url)
        )

    async def handle_balance(self, message: Message, user_id: str, text: str):
        user = await self.user_service.get_user(user_id)
        if not user:
            await self.telegram.send_message(user_id, "User not found.\nTry again or press /start to start the bot.")
            return
        await self.telegram.send_message(user_id, messages.balance_text(user))

    async def handle_online(self, user_id: str, online: bool):
        if not self.admins.is_admin(user_id):
            return
        await self.admin_service.set_online(user_id, online)
        if online:
            await self.telegram.send_message(user_id, f"You are online {messages.STATUS_ICONS['yes'][3]}")
        else:
            await self.telegram.send_message(user_id, f"You are offline {messages.STATUS_ICONS['no'][3]}")

    async def handle_signup(self, message: Message, user_id: str, text: str):
        if not self.admins.is_admin(user_id):
            return
        if await self.store.has_any(user_id):
            raise FlowConflict()
        message_id = await self.telegram.send_message(user_id, "Send your nickname.")
        if message_id:
            await self.store.put(user_id, SignupState(message_id=message_id))

    async def signup_input(self, user_id: str, state: SignupState, text: str):
        if not state.nick:
            if not text:
                await self.telegram.send_message(user_id, "Send your nickname as text.")
                return
            state.nick = text
            await self.store.put(user_id, state)
            await self.telegram.send_message(user_id, "Now send your password.")
            return
        admin = await self.admin_service.register(user_id, state.nick, text, commit=False)
        await self.store.delete(user_id, FlowKind.SIGNUP, commit=False)
        await self.db.commit()
        await self.telegram.send_message(user_id, f"Signed up as {admin.nick} {messages.STATUS_ICONS['yes'][0]}")

    async def handle_broadcast(self, message: Message, user_id: str, text: str):
        if not self.admins.is_admin(user_id):
            return
        if await self.store.has_any(user_id):
            raise FlowConflict()
        message_id = await self.telegram.send_message(
            user_id, "Send the broadcast text.", reply_markup=keyboards.cancel_keyboard("broadcast_cancel")
        )
        if message_id:
            await self.store.put(user_id, BroadcastState(message_id=message_id))

    async def broadcast_input(self, user_id: str, text: str):
        state = await self.store.take(user_id, FlowKind.BROADCAST)
        await self.db.commit()
        if not state or not text:
            return
        sent = 0
        for user in await self.user_service.get_all_users():
            if await self.telegram.send_message(user.id, text):
                sent += 1
        logger.info(f"Broadcast from {user_id} delivered to {sent} users")
        await self.telegram.edit_message_text(user_id, state.message_id, f"Broadcast sent to {sent} users.")

    async def cancel_broadcast(self, user_id: str) -> Optional[str]:
        state = await self.store.get(user_id, FlowKind.BROADCAST)
        await self.store.delete(user_id, FlowKind.BROADCAST)
        if state:
            await self.telegram.edit_message_text(user_id, state.message_id, "Broadcast cancelled.")
        return None
