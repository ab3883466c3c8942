"""
Error kinds raised by the services.

Every error carries the text shown to the Telegram user. The dialog router
catches StoreBotError per handler, so none of these ever reach the webhook.
"""


class StoreBotError(Exception):
    message = "Something went wrong. Please try again."

    def __init__(self, message: str = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class NotFoundError(StoreBotError):
    message = "Not found. Please try again."


class UserNotFound(NotFoundError):
    message = "User not found. Check the wallet number and start again."


class OrderNotFound(NotFoundError):
    message = "Order not found."


class UnauthorizedError(StoreBotError):
    message = "You are not an admin."


class ValidationError(StoreBotError):
    message = "Invalid input. Please start again."


class InsufficientBalance(ValidationError):
    message = "Insufficient balance."


class InvalidTransition(StoreBotError):
    message = "The order status does not allow this action."

    def __init__(self, order_id: int, current: str, new_status: str):
        self.order_id = order_id
        self.current = current
        self.new_status = new_status
        super().__init__(f"{self.message} (order {order_id} is {current})")


class FlowConflict(StoreBotError):
    message = "Finish your current action first."


class TransportError(StoreBotError):
    """Raised inside the Telegram client only."""
    message = "Telegram API call failed."
