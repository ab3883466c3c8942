import json
import pytest
from storebot.exceptions import InvalidTransition, OrderNotFound
from storebot.models.flow_state import FlowKind
from storebot.models.order import Order, OrderStatus
from storebot.models.user import User
from storebot.schemas.states import TransferState
from storebot.services.order_service import (
    OrderService,
    ACCEPT_FROM,
    CLIENT_CANCEL_FROM,
    DECLINE_FROM,
    DELIVER_FROM,
    PAID_FROM,
)

def web_app_order(total=30, payment="TMT", **overrides):
    payload = {"productId": 7, "quantity": 2, "payment": payment, "total": total, "receiver": "Ali"}
    payload.update(overrides)
    return {"data": json.dumps(payload), "button_text": "Shop"}

# --- Status transitions ---

@pytest.mark.asyncio
async def test_transition_allowed(db_session, make_order):
    order = await make_order()
    updated = await OrderService(db_session).transition(order.id, ACCEPT_FROM, OrderStatus.ACCEPTED, courier_id="900")
    assert updated.status == OrderStatus.ACCEPTED
    assert updated.courier_id == "900"

@pytest.mark.asyncio
async def test_transition_rejected_leaves_order_unchanged(db_session, make_order, fetch):
    order = await make_order(status=OrderStatus.COMPLETED)
    with pytest.raises(InvalidTransition):
        await OrderService(db_session).transition(order.id, DECLINE_FROM, OrderStatus.CANCELLED)
    stored = await fetch(Order, order.id)
    assert stored.status == OrderStatus.COMPLETED

@pytest.mark.asyncio
@pytest.mark.parametrize("status", list(OrderStatus))
async def test_paid_only_after_delivery(db_session, make_order, fetch, status):
    order = await make_order(status=status)
    service = OrderService(db_session)
    if status in PAID_FROM:
        await service.transition(order.id, PAID_FROM, OrderStatus.PAID)
        assert (await fetch(Order, order.id)).status == OrderStatus.PAID
    else:
        with pytest.raises(InvalidTransition):
            await service.transition(order.id, PAID_FROM, OrderStatus.PAID)
        assert (await fetch(Order, order.id)).status == status

@pytest.mark.asyncio
async def test_transition_unknown_order(db_session):
    with pytest.raises(OrderNotFound):
        await OrderService(db_session).transition(404, DELIVER_FROM, OrderStatus.DELIVERING)

@pytest.mark.asyncio
async def test_cancel_refunds_buyer(db_session, make_user, make_order, fetch):
    await make_user(100, tmt=5)
    order = await make_order(total=30)
    await OrderService(db_session).cancel(order.id, CLIENT_CANCEL_FROM)
    assert (await fetch(User, "100")).sum_tmt == 35
    assert (await fetch(Order, order.id)).status == OrderStatus.CANCELLED

# --- Placement through the shop ---

@pytest.mark.asyncio
async def test_place_order_from_mini_app(bot, telegram, make_user, fetch, fetch_all):
    await make_user(100, tmt=50)

    await bot.send(100, web_app_data=web_app_order(total=30))

    assert (await fetch(User, "100")).sum_tmt == 20
    orders = await fetch_all(Order)
    assert len(orders) == 1
    order = orders[0]
    assert order.status == OrderStatus.PENDING
    assert order.product_id == 7
    assert order.quantity == 2
    assert order.receiver == "Ali"
    assert set(order.admin_messages) == {"900", "901"}
    assert order.client_message_id is not None

    for admin_id in ("900", "901"):
        notice = telegram.sent("sendMessage", admin_id)[-1]
        buttons = [row[0]["callback_data"] for row in notice["reply_markup"]["inline_keyboard"]]
        assert buttons == [f"order_accept:{order.id}", f"order_decline:{order.id}"]

@pytest.mark.asyncio
async def test_place_order_insufficient_balance(bot, telegram, make_user, fetch, fetch_all):
    await make_user(100, tmt=10)

    await bot.send(100, web_app_data=web_app_order(total=30))

    assert (await fetch(User, "100")).sum_tmt == 10
    assert await fetch_all(Order) == []
    assert "Insufficient balance" in telegram.last_text(100)
    assert telegram.sent("sendMessage", 900) == []

@pytest.mark.asyncio
async def test_place_order_bad_payload(bot, telegram, make_user, fetch_all):
    await make_user(100, tmt=50)
    await bot.send(100, web_app_data={"data": "not json", "button_text": "Shop"})
    assert await fetch_all(Order) == []
    assert "could not be read" in telegram.last_text(100)

# --- Admin actions ---

@pytest.mark.asyncio
async def test_order_lifecycle(bot, telegram, make_user, make_order, fetch):
    await make_user(100)
    order = await make_order(admin_messages={"900": 101, "901": 102}, client_message_id=77)

    # 1. Accept
    await bot.press(900, f"order_accept:{order.id}", first_name="Aman")
    stored = await fetch(Order, order.id)
    assert stored.status == OrderStatus.ACCEPTED
    assert stored.courier_id == "900"
    edits = {(p["chat_id"], p["message_id"]): p for p in telegram.sent("editMessageText")}
    assert set(edits) == {("900", 101), ("901", 102)}
    # Only the acting admin keeps buttons
    assert "reply_markup" in edits[("900", 101)]
    assert "reply_markup" not in edits[("901", 102)]
    assert telegram.sent("sendMessage", 100)[-1]["reply_to_message_id"] == 77

    # 2. Deliver, complete, paid
    await bot.press(900, f"order_deliver:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.DELIVERING
    await bot.press(900, f"order_complete:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.COMPLETED
    await bot.press(901, f"order_paid:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.PAID

    # 3. Declining a paid order is refused with an alert
    telegram.reset()
    await bot.press(900, f"order_decline:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.PAID
    answer = telegram.sent("answerCallbackQuery")[-1]
    assert answer["show_alert"] is True
    assert "does not allow" in answer["text"]

@pytest.mark.asyncio
async def test_second_accept_is_rejected(bot, telegram, make_user, make_order, fetch):
    await make_user(100)
    order = await make_order(admin_messages={"900": 101, "901": 102})

    await bot.press(900, f"order_accept:{order.id}")
    await bot.press(901, f"order_accept:{order.id}")

    stored = await fetch(Order, order.id)
    assert stored.courier_id == "900"
    assert telegram.sent("answerCallbackQuery")[-1]["show_alert"] is True

@pytest.mark.asyncio
async def test_non_admin_cannot_accept(bot, telegram, make_user, make_order, fetch):
    await make_user(100)
    order = await make_order()

    await bot.press(100, f"order_accept:{order.id}")

    assert (await fetch(Order, order.id)).status == OrderStatus.PENDING
    assert telegram.sent("answerCallbackQuery")[-1]["text"] == "You are not an admin."

@pytest.mark.asyncio
async def test_decline_with_reason(bot, telegram, make_user, make_order, fetch, flow_states):
    await make_user(100, tmt=0)
    await make_order(order_id=42, total=30, admin_messages={"900": 101, "901": 102}, client_message_id=77)

    # 1. Decline cancels, refunds and asks for a reason
    await bot.press(900, "order_decline:42")
    stored = await fetch(Order, 42)
    assert stored.status == OrderStatus.CANCELLED
    assert (await fetch(User, "100")).sum_tmt == 30
    reason = await flow_states.get("900", FlowKind.REASON)
    assert reason.order_id == 42
    assert "reason" in telegram.last_text(900)

    # 2. The next text is the reason
    telegram.reset()
    await bot.send(900, "out of stock")

    edits = {
        (p["chat_id"], p["message_id"])
        for p in telegram.sent("editMessageText")
        if "out of stock" in p["text"]
    }
    assert edits == {("900", 101), ("901", 102)}
    reply = telegram.sent("sendMessage", 100)[-1]
    assert reply["reply_to_message_id"] == 77
    assert "out of stock" in reply["text"]
    assert (await fetch(Order, 42)).reason == "out of stock"
    assert await flow_states.get("900", FlowKind.REASON) is None

@pytest.mark.asyncio
async def test_client_cancel(bot, telegram, make_user, make_order, fetch):
    await make_user(100, tmt=0)
    await make_user(200)
    order = await make_order(total=30, admin_messages={"900": 101})

    # 1. Someone else's order
    await bot.press(200, f"order_cancel:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.PENDING

    # 2. Own order
    await bot.press(100, f"order_cancel:{order.id}")
    assert (await fetch(Order, order.id)).status == OrderStatus.CANCELLED
    assert (await fetch(User, "100")).sum_tmt == 30
    assert "returned" in telegram.last_text(100)

    # 3. Only once
    await bot.press(100, f"order_cancel:{order.id}")
    assert (await fetch(User, "100")).sum_tmt == 30

@pytest.mark.asyncio
async def test_double_decline_keeps_reason_pending(bot, telegram, make_user, make_order, fetch, flow_states):
    await make_user(100, tmt=0)
    await make_order(order_id=42, total=30, admin_messages={"900": 101, "901": 102}, client_message_id=77)

    # 1. Decline tapped twice
    await bot.press(900, "order_decline:42")
    await bot.press(900, "order_decline:42")

    assert (await flow_states.get("900", FlowKind.REASON)).order_id == 42
    assert (await fetch(User, "100")).sum_tmt == 30
    assert telegram.sent("sendMessage", 100) == []

    # 2. The reason still reaches the client and the order
    await bot.send(900, "out of stock")

    reply = telegram.sent("sendMessage", 100)[-1]
    assert "out of stock" in reply["text"]
    assert (await fetch(Order, 42)).reason == "out of stock"
    assert await flow_states.get("900", FlowKind.REASON) is None

@pytest.mark.asyncio
async def test_decline_another_order_closes_owed_reason(bot, telegram, make_user, make_order, fetch, flow_states):
    await make_user(100, tmt=0)
    await make_order(order_id=42, admin_messages={"900": 101})
    await make_order(order_id=43, admin_messages={"900": 201})

    await bot.press(900, "order_decline:42")
    await bot.press(900, "order_decline:43")

    assert (await flow_states.get("900", FlowKind.REASON)).order_id == 43
    assert (await fetch(Order, 42)).status == OrderStatus.CANCELLED
    assert (await fetch(Order, 43)).status == OrderStatus.CANCELLED
    # The client heard about 42 without a reason
    assert any("42" in text for text in telegram.texts(100))

@pytest.mark.asyncio
async def test_order_placed_during_open_transfer(bot, telegram, make_user, fetch, fetch_all, flow_states):
    await make_user(100, tmt=50)
    await flow_states.put("100", TransferState(message_id=9, sender_wal_num="W100"))

    await bot.send(100, web_app_data=web_app_order(total=30))

    orders = await fetch_all(Order)
    assert len(orders) == 1
    assert (await fetch(User, "100")).sum_tmt == 20
    # The transfer is untouched
    transfer = await flow_states.get("100", FlowKind.TRANSFER)
    assert transfer is not None
    assert transfer.receiver_id is None
    assert telegram.sent("unpinChatMessage", 100) == []

@pytest.mark.asyncio
async def test_failed_order_during_open_transfer_keeps_transfer(bot, telegram, make_user, fetch_all, flow_states):
    await make_user(100, tmt=10)
    await flow_states.put("100", TransferState(message_id=9, sender_wal_num="W100"))

    await bot.send(100, web_app_data=web_app_order(total=30))

    assert await fetch_all(Order) == []
    assert "Insufficient balance" in telegram.last_text(100)
    assert await flow_states.get("100", FlowKind.TRANSFER) is not None
