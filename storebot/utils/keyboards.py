from storebot.models.ledger import Currency

SHOP_BUTTON = "Enter shop 🛒"
BALANCE_BUTTON = "Balance"
CALL_ADMIN_BUTTON = "Call admin"

def main_keyboard() -> dict:
    return {
        "keyboard": [
            [{"text": SHOP_BUTTON}, {"text": BALANCE_BUTTON}],
            [{"text": CALL_ADMIN_BUTTON}],
        ],
        "resize_keyboard": True,
        "one_time_keyboard": False,
    }

def inline(*rows) -> dict:
    """inline(("Yes", "cb_yes"), ("No", "cb_no")) puts one button per row."""
    return {
        "inline_keyboard": [
            [{"text": text, "callback_data": data}] for text, data in rows
        ]
    }

def shop_keyboard(url: str) -> dict:
    return {"inline_keyboard": [[{"text": "Shop 🛒", "web_app": {"url": url}}]]}

def cancel_keyboard(callback_data: str) -> dict:
    return inline(("Cancel 🚫", callback_data))

def currency_keyboard(prefix: str, cancel_data: str) -> dict:
    return inline(
        *[(c.value, f"{prefix}:{c.value}") for c in Currency],
        ("Cancel 🚫", cancel_data),
    )

def confirm_keyboard(confirm_data: str, cancel_data: str) -> dict:
    return {
        "inline_keyboard": [[
            {"text": "Wrong", "callback_data": cancel_data},
            {"text": "Correct", "callback_data": confirm_data},
        ]]
    }

def accept_chat_keyboard(client_id: str) -> dict:
    return inline(("Accept", f"accept_chat:{client_id}"))

def paired_chat_keyboard(client_id: str) -> dict:
    return inline((str(client_id), "noop"))

def new_order_keyboard(order_id: int) -> dict:
    return inline(("Accept ✅", f"order_accept:{order_id}"), ("Decline ❌", f"order_decline:{order_id}"))

def accepted_order_keyboard(order_id: int) -> dict:
    return inline(("Deliver 🚚", f"order_deliver:{order_id}"), ("Decline ❌", f"order_decline:{order_id}"))

def delivering_order_keyboard(order_id: int) -> dict:
    return inline(("Delivered ✅", f"order_complete:{order_id}"), ("Paid 💰", f"order_paid:{order_id}"))

def completed_order_keyboard(order_id: int) -> dict:
    return inline(("Paid 💰", f"order_paid:{order_id}"))

def client_order_keyboard(order_id: int) -> dict:
    return inline(("Cancel order", f"order_cancel:{order_id}"))
