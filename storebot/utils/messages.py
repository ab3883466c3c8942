from html import escape
from storebot.models.order import Order
from storebot.models.user import User
from typing import Optional

STATUS_ICONS = {
    "yes": ["✅", "✔️", "🟢", "👍"],
    "no": ["❌", "✖️", "🔴", "👎"],
    "care": ["⚠️", "❗", "🚨", "🔥", "💥", "🛑", "🚫", "📛"],
    "wait": ["⏳", "⌛", "🕒"],
}

WELCOME = "<b>Welcome!</b>\nPress the button below to enter the shop."
CALL_ADMIN_TO_TOP_UP = "Call an admin to top up your balance."
UNKNOWN_COMMAND = "Unknown command"
UNKNOWN_MESSAGE = "Unknown message"
CHAT_ACCEPTED = "Chat accepted. Until the chat is closed, everything you send goes to the other side."
CHAT_ENDED = "Chat ended."
GENERIC_ERROR = "An error occurred. Please try again."

def user_link(user_id, nick: Optional[str] = None) -> str:
    return f'<a href="tg://user?id={user_id}">{escape(str(nick or user_id))}</a>'

def balance_text(user: User) -> str:
    return f"Wallet number: <code>{user.wal_num}</code>\nTMT: {user.sum_tmt:g}\nUSDT: {user.sum_usdt:g}"

def suspicious_case(message: str, command: str, username: Optional[str], user_id) -> str:
    return f"{message}\nCommand: {command}\nUser: @{username} / ID: {user_id}"

def order_header(order_id: int) -> str:
    return f"<b>Order ID: {order_id}</b>"

def order_details(order: Order, for_admin: bool = True) -> str:
    lines = [
        f"Product: {order.product_id}",
        f"Quantity: {order.quantity or 1}",
        f"Total: {order.total or 0:g} {order.payment.value}",
        f"Receiver: {escape(order.receiver)}",
    ]
    if for_admin:
        lines.append(f"Client: {user_link(order.user_id)}")
    return "\n".join(lines)

def order_accepted(admin_id, first_name: str) -> str:
    return f"{STATUS_ICONS['yes'][0]} Order accepted by ID:{admin_id} ({escape(first_name)})"

def order_delivering(admin_id, first_name: str) -> str:
    return f"{STATUS_ICONS['wait'][0]} Order is being delivered by ID:{admin_id} ({escape(first_name)})"

def order_completed(admin_id, first_name: str) -> str:
    return f"{STATUS_ICONS['yes'][2]} Order delivered by ID:{admin_id} ({escape(first_name)})"

def order_paid(admin_id, first_name: str) -> str:
    return f"{STATUS_ICONS['yes'][3]} Order paid, confirmed by ID:{admin_id} ({escape(first_name)})"

def order_declined(admin_id, first_name: Optional[str] = None, reason: Optional[str] = None) -> str:
    name = f" ({escape(first_name)})" if first_name else ""
    text = f"{STATUS_ICONS['no'][2]} Order declined by ID:{admin_id}{name}"
    if reason:
        text += f"\nReason: {escape(reason)}"
    return text

def order_cancelled_by_client() -> str:
    return f"{STATUS_ICONS['no'][0]} Order cancelled by the client"

def chat_request(client_id, username: Optional[str] = None) -> str:
    return f"{user_link(client_id, username)} requests a chat"

def chat_paired(admin_id, client_id) -> str:
    return f"{user_link(admin_id)} is chatting with {user_link(client_id)}."

def chat_finished(ender_id, other_id, ender_is_admin: bool) -> str:
    if other_id is None:
        return f"{user_link(ender_id)} withdrew the chat request."
    if ender_is_admin:
        return f"Admin {user_link(ender_id)} closed the chat with {user_link(other_id)}."
    return f"{user_link(ender_id)} ended the chat with {user_link(other_id)}."
