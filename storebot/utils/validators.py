import math
from storebot.models.ledger import Currency
from storebot.exceptions import ValidationError
from typing import Tuple

def parse_amount(text: str, allow_negative: bool = False) -> float:
    try:
        amount = float((text or "").strip().replace(",", "."))
    except ValueError:
        raise ValidationError("The amount you entered is not a number. Please start again.")
    if math.isnan(amount) or math.isinf(amount):
        raise ValidationError("The amount you entered is not a number. Please start again.")
    if amount == 0:
        raise ValidationError("Amount must not be zero. Please start again.")
    if amount < 0 and not allow_negative:
        raise ValidationError("Amount must be a positive number. Please start again.")
    return amount

def parse_currency(value: str) -> Currency:
    try:
        return Currency((value or "").upper())
    except ValueError:
        raise ValidationError(f"Unknown currency {value}.")

def parse_callback(data: str) -> Tuple[str, str]:
    """'order_accept:42' -> ('order_accept', '42')"""
    action, _, arg = (data or "").partition(":")
    return action, arg

def parse_order_id(arg: str) -> int:
    try:
        return int(arg)
    except ValueError:
        raise ValidationError(f"Invalid order id {arg}.")
