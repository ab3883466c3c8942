import logging
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from storebot.models.order import Order, OrderStatus
from storebot.exceptions import OrderNotFound, InvalidTransition
from storebot.schemas.order import PlaceOrder
from storebot.services.ledger_service import LedgerService
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)

# Allowed current statuses per action
ACCEPT_FROM = {OrderStatus.PENDING}
DELIVER_FROM = {OrderStatus.ACCEPTED}
COMPLETE_FROM = {OrderStatus.DELIVERING}
PAID_FROM = {OrderStatus.DELIVERING, OrderStatus.COMPLETED}
DECLINE_FROM = {OrderStatus.PENDING, OrderStatus.ACCEPTED}
CLIENT_CANCEL_FROM = {OrderStatus.PENDING}

class OrderService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def get_order(self, order_id: int) -> Optional[Order]:
        result = await self.db.execute(
            select(Order).filter(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def require_order(self, order_id: int) -> Order:
        order = await self.get_order(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    async def transition(
        self,
        order_id: int,
        allowed: Iterable[OrderStatus],
        new_status: OrderStatus,
        courier_id: Optional[str] = None,
        commit: bool = True,
    ) -> Order:
        """
        The only way order status changes. The stored status must be one of
        `allowed`; otherwise InvalidTransition is raised and the order is left
        untouched.
        """
        allowed = {OrderStatus(s) for s in allowed}
        order = await self.require_order(order_id)
        current = OrderStatus(order.status)
        if current not in allowed:
            logger.warning(f"Rejected order {order_id} transition {current.value} -> {OrderStatus(new_status).value}")
            raise InvalidTransition(order_id, current.value, OrderStatus(new_status).value)

        values = {"status": OrderStatus(new_status)}
        if courier_id:
            values["courier_id"] = str(courier_id)
        # Conditional on the status we checked, so a concurrent transition wins only once
        result = await self.db.execute(
            update(Order).where(Order.id == order_id, Order.status == current).values(**values)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            latest = await self.require_order(order_id)
            raise InvalidTransition(order_id, OrderStatus(latest.status).value, OrderStatus(new_status).value)

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        order = await self.require_order(order_id)
        logger.info(f"Order {order_id}: {current.value} -> {order.status.value}")
        return order

    async def place_order(self, user_id: str, payload: PlaceOrder) -> Order:
        """Charge the buyer and store a pending order."""
        await self.ledger.charge(user_id, payload.payment, payload.total)
        order = Order(
            status=OrderStatus.PENDING,
            user_id=str(user_id),
            product_id=payload.product_id,
            quantity=payload.quantity,
            payment=payload.payment,
            total=payload.total,
            receiver=payload.receiver,
            admin_messages={},
        )
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)
        logger.info(f"Order {order.id} placed by {user_id}")
        return order

    async def set_messages(self, order: Order, admin_messages: Dict[str, int], client_message_id: Optional[int]) -> Order:
        order.admin_messages = dict(admin_messages)
        order.client_message_id = client_message_id
        await self.db.commit()
        await self.db.refresh(order)
        return order

    async def set_reason(self, order_id: int, reason: str, commit: bool = True):
        order = await self.require_order(order_id)
        order.reason = reason
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

    async def cancel(self, order_id: int, allowed: Iterable[OrderStatus], commit: bool = True) -> Order:
        """Cancel and give the buyer the order total back."""
        order = await self.transition(order_id, allowed, OrderStatus.CANCELLED, commit=False)
        await self.ledger.refund(order.user_id, order.payment, order.total or 0)
        if commit:
            await self.db.commit()
        return order
