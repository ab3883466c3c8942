import json
import logging
from typing import Optional
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.models.flow_state import FlowKind
from storebot.models.order import Order, OrderStatus
from storebot.schemas.order import PlaceOrder
from storebot.schemas.states import ReasonState
from storebot.services.admin_service import AdminRegistry
from storebot.services.order_service import (
    OrderService,
    ACCEPT_FROM,
    DELIVER_FROM,
    COMPLETE_FROM,
    PAID_FROM,
    DECLINE_FROM,
    CLIENT_CANCEL_FROM,
)
from storebot.services.store import FlowStore
from storebot.services.telegram_client import TelegramClient
from storebot.services.user_service import UserService
from storebot.exceptions import UnauthorizedError, ValidationError
from storebot.utils import keyboards, messages

logger = logging.getLogger(__name__)

class OrderFlows:
    """Bot side of the order lifecycle: placement, admin actions and the decline reason dialog."""

    def __init__(self, db: AsyncSession, telegram: TelegramClient, admins: AdminRegistry):
        self.db = db
        self.telegram = telegram
        self.admins = admins
        self.store = FlowStore(db)
        self.orders = OrderService(db)
        self.user_service = UserService(db)

    async def _edit_admin_copies(self, order: Order, text: str, actor_id: Optional[str] = None, actor_markup: dict = None):
        for admin_id, message_id in (order.admin_messages or {}).items():
            markup = actor_markup if admin_id == actor_id else None
            await self.telegram.edit_message_text(admin_id, message_id, text, reply_markup=markup)

    async def _notify_client(self, order: Order, text: str):
        await self.telegram.send_message(order.user_id, text, reply_to_message_id=order.client_message_id)

    async def place_order(self, user_id: str, raw: str):
        try:
            payload = PlaceOrder.model_validate(json.loads(raw))
        except (ValueError, PydanticValidationError) as e:
            logger.warning(f"Bad order payload from {user_id}: {e}")
            raise ValidationError("The order could not be read. Please order again from the shop.")
        await self.user_service.require_user(user_id)

        order = await self.orders.place_order(user_id, payload)
        client_message_id = await self.telegram.send_message(
            user_id,
            f"{messages.order_header(order.id)}\n{messages.order_details(order, for_admin=False)}\n\nOrder received. Wait for an admin.",
            reply_markup=keyboards.client_order_keyboard(order.id),
        )
        admin_messages = {}
        text = f"{messages.order_header(order.id)}\n{messages.order_details(order)}"
        for admin_id in self.admins:
            message_id = await self.telegram.send_message(admin_id, text, reply_markup=keyboards.new_order_keyboard(order.id))
            if message_id:
                admin_messages[admin_id] = message_id
        await self.orders.set_messages(order, admin_messages, client_message_id)

    async def accept(self, admin_id: str, first_name: str, order_id: int) -> Optional[str]:
        self.admins.require_admin(admin_id)
        order = await self.orders.transition(order_id, ACCEPT_FROM, OrderStatus.ACCEPTED, courier_id=admin_id)
        await self._edit_admin_copies(
            order,
            f"{messages.order_header(order.id)}\n{messages.order_details(order)}\n{messages.order_accepted(admin_id, first_name)}",
            actor_id=admin_id,
            actor_markup=keyboards.accepted_order_keyboard(order.id),
        )
        await self._notify_client(order, f"{messages.order_header(order.id)}\n{messages.order_accepted(admin_id, first_name)}")
        return None

    async def deliver(self, admin_id: str, first_name: str, order_id: int) -> Optional[str]:
        self.admins.require_admin(admin_id)
        order = await self.orders.transition(order_id, DELIVER_FROM, OrderStatus.DELIVERING, courier_id=admin_id)
        await self._edit_admin_copies(
            order,
            f"{messages.order_header(order.id)}\n{messages.order_details(order)}\n{messages.order_delivering(admin_id, first_name)}",
            actor_id=admin_id,
            actor_markup=keyboards.delivering_order_keyboard(order.id),
        )
        await self._notify_client(order, f"{messages.order_header(order.id)}\n{messages.order_delivering(admin_id, first_name)}")
        return None

    async def complete(self, admin_id: str, first_name: str, order_id: int) -> Optional[str]:
        self.admins.require_admin(admin_id)
        order = await self.orders.transition(order_id, COMPLETE_FROM, OrderStatus.COMPLETED)
        await self._edit_admin_copies(
            order,
            f"{messages.order_header(order.id)}\n{messages.order_details(order)}\n{messages.order_completed(admin_id, first_name)}",
            actor_id=admin_id,
            actor_markup=keyboards.completed_order_keyboard(order.id),
        )
        await self._notify_client(order, f"{messages.order_header(order.id)}\n{messages.order_completed(admin_id, first_name)}")
        return None

    async def mark_paid(self, admin_id: str, first_name: str, order_id: int) -> Optional[str]:
        self.admins.require_admin(admin_id)
        order = await self.orders.transition(order_id, PAID_FROM, OrderStatus.PAID)
        await self._edit_admin_copies(
            order,
            f"{messages.order_header(order.id)}\n{messages.order_details(order)}\n{messages.order_paid(admin_id, first_name)}",
        )
        return None

    async def decline(self, admin_id: str, first_name: str, order_id: int) -> Optional[str]:
        """Cancel the order and ask the admin for a reason."""
        self.admins.require_admin(admin_id)
        order = await self.orders.cancel(order_id, DECLINE_FROM, commit=False)

        previous = await self.store.get(admin_id, FlowKind.REASON)
        if previous and previous.order_id != order.id:
            # A reason is still owed for another order; close it without one
            await self.finish_reason(admin_id, first_name, previous, None)

        await self.store.put(
            admin_id,
            ReasonState(
                order_id=order.id,
                client_id=order.user_id,
                admin_messages=order.admin_messages or {},
                client_message_id=order.client_message_id,
            ),
            commit=False,
        )
        await self.db.commit()

        await self._edit_admin_copies(
            order, f"{messages.order_header(order.id)}\n{messages.order_declined(admin_id, first_name)}"
        )
        await self.telegram.send_message(admin_id, f"Send the reason for declining order {order.id}.")
        return None

    async def finish_reason(self, admin_id: str, first_name: str, state: ReasonState, reason: Optional[str]):
        """Text received while a decline reason is owed."""
        header = messages.order_header(state.order_id)
        await self.telegram.send_message(
            state.client_id,
            f"{header}\n{messages.order_declined(admin_id, reason=reason)}",
            reply_to_message_id=state.client_message_id,
        )
        text = f"{header}\n{messages.order_declined(admin_id, first_name, reason)}"
        for target_admin, message_id in state.admin_messages.items():
            await self.telegram.edit_message_text(target_admin, message_id, text)
        if reason:
            await self.orders.set_reason(state.order_id, reason, commit=False)
        await self.store.delete(admin_id, FlowKind.REASON, commit=False)
        await self.db.commit()

    async def client_cancel(self, user_id: str, order_id: int) -> Optional[str]:
        order = await self.orders.require_order(order_id)
        if order.user_id != user_id:
            raise UnauthorizedError("This is not your order.")
        order = await self.orders.cancel(order_id, CLIENT_CANCEL_FROM)
        await self._edit_admin_copies(order, f"{messages.order_header(order.id)}\n{messages.order_cancelled_by_client()}")
        await self._notify_client(
            order, f"{messages.order_header(order.id)}\n{messages.order_cancelled_by_client()}\n{order.total or 0:g} {order.payment.value} returned to your balance."
        )
        return None
