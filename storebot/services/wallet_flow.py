import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.models.flow_state import FlowKind
from storebot.models.ledger import Currency
from storebot.schemas.states import SumAddState, TransferState, CheckState
from storebot.services.admin_service import AdminRegistry
from storebot.services.ledger_service import LedgerService
from storebot.services.store import FlowStore
from storebot.services.telegram_client import TelegramClient
from storebot.services.user_service import UserService
from storebot.exceptions import FlowConflict, UnauthorizedError, ValidationError
from storebot.utils import keyboards, messages
from storebot.utils.validators import parse_amount, parse_currency

logger = logging.getLogger(__name__)

class WalletFlows:
    """
    Multi-step wallet dialogs: admin balance adjustment, peer transfer and
    admin wallet check. Each step is persisted before the next prompt goes out.
    """

    def __init__(self, db: AsyncSession, telegram: TelegramClient, admins: AdminRegistry, edit_command: str = "edit"):
        self.db = db
        self.telegram = telegram
        self.admins = admins
        self.edit_command = edit_command
        self.store = FlowStore(db)
        self.user_service = UserService(db)
        self.ledger = LedgerService(db)

    async def _deny(self, user_id: str, username: Optional[str], command: str):
        """Tell the admin pool about a non-admin trying an admin command."""
        notice = UnauthorizedError.message
        for admin_id in self.admins:
            await self.telegram.send_message(admin_id, messages.suspicious_case(notice, command, username, user_id))
        await self.telegram.send_message(user_id, notice)
        logger.warning(f"Non-admin {user_id} tried {command}")

    # --- Admin balance adjustment ---

    async def start_sum_add(self, admin_id: str, username: Optional[str] = None):
        if not self.admins.is_admin(admin_id):
            await self._deny(admin_id, username, f"/{self.edit_command}")
            return
        if await self.store.has_any(admin_id):
            raise FlowConflict()
        message_id = await self.telegram.send_message(
            admin_id, "Wallet number or Telegram ID?", reply_markup=keyboards.cancel_keyboard("sumadd_cancel")
        )
        if message_id:
            await self.store.put(admin_id, SumAddState(message_id=message_id))

    async def sum_add_input(self, admin_id: str, state: SumAddState, text: str):
        if not state.wal_num:
            client = await self.user_service.find_user(text)
            state.wal_num = client.wal_num
            state.client_id = client.id
            await self.store.put(admin_id, state)
            await self.telegram.edit_message_text(
                admin_id,
                state.message_id,
                f"Wallet number: {state.wal_num}\nCurrency?",
                reply_markup=keyboards.currency_keyboard("sumadd_currency", "sumadd_cancel"),
            )
        elif state.currency is None:
            await self.telegram.send_message(admin_id, "Choose the currency with the buttons.", reply_to_message_id=state.message_id)
        elif state.sum is None:
            state.sum = parse_amount(text, allow_negative=True)
            await self.store.put(admin_id, state)
            await self.telegram.edit_message_text(
                admin_id,
                state.message_id,
                f"Wallet number: {state.wal_num}\n{state.sum:+g} {state.currency.value}",
                reply_markup=keyboards.confirm_keyboard("sumadd_confirm", "sumadd_cancel"),
            )
        else:
            await self.telegram.send_message(admin_id, "Confirm or cancel with the buttons.", reply_to_message_id=state.message_id)

    async def sum_add_currency(self, admin_id: str, value: str) -> Optional[str]:
        state = await self.store.get(admin_id, FlowKind.SUMADD)
        if not state:
            return "No balance change in progress."
        if not state.wal_num or state.sum is not None:
            return "Not expecting a currency now."
        state.currency = parse_currency(value)
        await self.store.put(admin_id, state)
        await self.telegram.edit_message_text(
            admin_id,
            state.message_id,
            f"Wallet number: {state.wal_num}\nCurrency: {state.currency.value}\nAmount? (negative to subtract)",
            reply_markup=keyboards.cancel_keyboard("sumadd_cancel"),
        )
        return None

    async def sum_add_confirm(self, admin_id: str) -> Optional[str]:
        state = await self.store.take(admin_id, FlowKind.SUMADD)
        if not state:
            return "No balance change in progress."
        if state.client_id is None or state.currency is None or state.sum is None:
            await self.db.rollback()
            return "The balance change is not complete yet."
        if not self.admins.is_admin(admin_id):
            raise UnauthorizedError()

        client, record = await self.ledger.adjust_balance(admin_id, state.client_id, state.currency, state.sum)
        await self.telegram.edit_message_text(
            admin_id,
            state.message_id,
            f"{messages.STATUS_ICONS['yes'][0]} {record.sum:+g} {record.currency.value} applied.\n{messages.balance_text(client)}",
        )
        await self.telegram.send_message(
            client.id, f"Your balance was updated by {record.sum:+g} {record.currency.value}.\n{messages.balance_text(client)}"
        )
        return None

    async def sum_add_cancel(self, admin_id: str) -> Optional[str]:
        state = await self.store.get(admin_id, FlowKind.SUMADD)
        await self.store.delete(admin_id, FlowKind.SUMADD)
        if state:
            await self.telegram.edit_message_text(admin_id, state.message_id, "Balance change cancelled.")
        return None

    # --- Peer transfer ---

    async def start_transfer(self, user_id: str):
        if await self.store.get(user_id, FlowKind.TRANSFER):
            await self.telegram.send_message(user_id, "Finish your previous transfer first, then try again!")
            return
        sender = await self.user_service.require_user(user_id)
        if await self.store.has_any(user_id):
            raise FlowConflict()
        message_id = await self.telegram.send_message(
            user_id,
            "Receiver's wallet number?",
            reply_markup=keyboards.cancel_keyboard("transfer_cancel"),
        )
        if not message_id:
            await self.telegram.send_message(user_id, messages.GENERIC_ERROR)
            return
        await self.store.put(user_id, TransferState(message_id=message_id, sender_wal_num=sender.wal_num))
        await self.telegram.pin_chat_message(user_id, message_id)

    async def transfer_input(self, user_id: str, state: TransferState, text: str):
        if text.startswith("/"):
            # Commands are not transfer input; the transfer stays open
            await self.telegram.send_message(
                user_id, "Finish your previous transfer first, then try again!", reply_to_message_id=state.message_id
            )
            return
        if state.receiver_id is None:
            receiver = await self.user_service.find_user(text)
            if receiver.id == user_id:
                raise ValidationError("You cannot transfer to your own wallet. Please start again.")
            state.receiver_id = receiver.id
            state.receiver_wal_num = receiver.wal_num
            await self.store.put(user_id, state)
            await self.telegram.edit_message_text(
                user_id,
                state.message_id,
                f"Receiver: {state.receiver_wal_num}\nCurrency?",
                reply_markup=keyboards.currency_keyboard("transfer_currency", "transfer_cancel"),
            )
        elif state.currency is None:
            await self.telegram.send_message(user_id, "Choose the currency with the buttons.", reply_to_message_id=state.message_id)
        elif state.amount is None:
            amount = parse_amount(text)
            await self.ledger.ensure_funds(user_id, state.currency, amount)
            state.amount = amount
            await self.store.put(user_id, state)
            await self.telegram.edit_message_text(
                user_id,
                state.message_id,
                f"Send {state.amount:g} {state.currency.value} to {state.receiver_wal_num}?",
                reply_markup=keyboards.confirm_keyboard("transfer_confirm", "transfer_cancel"),
            )
        else:
            await self.telegram.send_message(user_id, "Confirm or cancel with the buttons.", reply_to_message_id=state.message_id)

    async def transfer_currency(self, user_id: str, value: str) -> Optional[str]:
        state = await self.store.get(user_id, FlowKind.TRANSFER)
        if not state:
            return "No transfer in progress."
        if state.receiver_id is None or state.amount is not None:
            return "Not expecting a currency now."
        state.currency = parse_currency(value)
        await self.store.put(user_id, state)
        await self.telegram.edit_message_text(
            user_id,
            state.message_id,
            f"Receiver: {state.receiver_wal_num}\nCurrency: {state.currency.value}\nAmount?",
            reply_markup=keyboards.cancel_keyboard("transfer_cancel"),
        )
        return None

    async def transfer_confirm(self, user_id: str) -> Optional[str]:
        state = await self.store.take(user_id, FlowKind.TRANSFER)
        if not state:
            return "No transfer in progress."
        if state.receiver_id is None or state.currency is None or state.amount is None:
            await self.db.rollback()
            return "The transfer is not complete yet."

        # Balance is checked again here, it may have changed since the amount was entered
        record, sender, receiver = await self.ledger.transfer(user_id, state.receiver_id, state.currency, state.amount)
        await self.telegram.unpin_chat_message(user_id, state.message_id)
        await self.telegram.edit_message_text(
            user_id,
            state.message_id,
            f"{messages.STATUS_ICONS['yes'][0]} Sent {record.amount:g} {record.currency.value} to {state.receiver_wal_num}.\n{messages.balance_text(sender)}",
        )
        await self.telegram.send_message(
            receiver.id,
            f"You received {record.amount:g} {record.currency.value} from {state.sender_wal_num}.\n{messages.balance_text(receiver)}",
        )
        return None

    async def transfer_cancel(self, user_id: str) -> Optional[str]:
        state = await self.store.get(user_id, FlowKind.TRANSFER)
        await self.store.delete(user_id, FlowKind.TRANSFER)
        if state:
            await self.telegram.unpin_chat_message(user_id, state.message_id)
            await self.telegram.edit_message_text(user_id, state.message_id, "Transfer cancelled.")
        return None

    # --- Admin wallet check ---

    async def start_check(self, admin_id: str, username: Optional[str] = None):
        if not self.admins.is_admin(admin_id):
            await self._deny(admin_id, username, "/check")
            return
        if await self.store.has_any(admin_id):
            raise FlowConflict()
        message_id = await self.telegram.send_message(
            admin_id, "Wallet number or Telegram ID?", reply_markup=keyboards.cancel_keyboard("check_cancel")
        )
        if message_id:
            await self.store.put(admin_id, CheckState(message_id=message_id))

    async def check_input(self, admin_id: str, state: CheckState, text: str):
        user = await self.user_service.find_user(text)
        await self.store.delete(admin_id, FlowKind.CHECK)
        await self.telegram.edit_message_text(admin_id, state.message_id, f"ID: {user.id}\n{messages.balance_text(user)}")

    async def check_cancel(self, admin_id: str) -> Optional[str]:
        state = await self.store.get(admin_id, FlowKind.CHECK)
        await self.store.delete(admin_id, FlowKind.CHECK)
        if state:
            await self.telegram.edit_message_text(admin_id, state.message_id, "Check cancelled.")
        return None

    async def abort(self, user_id: str, kind: FlowKind):
        """Drop a wallet flow after an error; the transfer prompt is unpinned."""
        state = await self.store.get(user_id, kind)
        await self.store.delete(user_id, kind)
        if state is not None and kind == FlowKind.TRANSFER:
            await self.telegram.unpin_chat_message(user_id, state.message_id)
