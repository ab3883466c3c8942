import logging
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from storebot.models.user import User
from storebot.models.ledger import Currency, SummUpdate, Transfer, BALANCE_FIELDS
from storebot.exceptions import InsufficientBalance, UserNotFound, ValidationError
from storebot.services.user_service import UserService
from typing import Tuple

logger = logging.getLogger(__name__)

def balance_of(user: User, currency: Currency) -> float:
    return getattr(user, BALANCE_FIELDS[Currency(currency)])

class LedgerService:
    """
    Balance mutations. Every debit is a conditional UPDATE on the balance
    column so that a balance never drops below zero, even when two requests
    spend from the same wallet at once.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_service = UserService(db)

    async def _debit(self, user_id: str, currency: Currency, amount: float):
        column = getattr(User, BALANCE_FIELDS[Currency(currency)])
        result = await self.db.execute(
            update(User)
            .where(User.id == str(user_id), column >= amount)
            .values({column: column - amount})
        )
        if result.rowcount != 1:
            if not await self.user_service.get_user(user_id):
                raise UserNotFound()
            raise InsufficientBalance(f"Insufficient balance: you cannot spend {amount:g} {Currency(currency).value}.")

    async def _credit(self, user_id: str, currency: Currency, amount: float):
        column = getattr(User, BALANCE_FIELDS[Currency(currency)])
        result = await self.db.execute(
            update(User).where(User.id == str(user_id)).values({column: column + amount})
        )
        if result.rowcount != 1:
            raise UserNotFound()

    async def _reload(self, user_id: str) -> User:
        user = await self.user_service.get_user(user_id)
        await self.db.refresh(user)
        return user

    async def ensure_funds(self, user_id: str, currency: Currency, amount: float):
        user = await self.user_service.require_user(user_id)
        await self.db.refresh(user)
        if balance_of(user, currency) < amount:
            raise InsufficientBalance(
                f"Insufficient balance: {balance_of(user, currency):g} {Currency(currency).value} available."
            )

    async def adjust_balance(self, cashier_id: str, client_id: str, currency: Currency, amount: float, commit: bool = True) -> Tuple[User, SummUpdate]:
        """Apply an admin adjustment (signed) and write its audit record."""
        if amount == 0:
            raise ValidationError("Amount must not be zero. Please start again.")
        if amount > 0:
            await self._credit(client_id, currency, amount)
        else:
            await self._debit(client_id, currency, -amount)

        record = SummUpdate(cashier_id=str(cashier_id), client_id=str(client_id), currency=Currency(currency), sum=amount)
        self.db.add(record)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info(f"Admin {cashier_id} adjusted {client_id} by {amount:g} {Currency(currency).value}")
        return await self._reload(client_id), record

    async def transfer(self, sender_id: str, receiver_id: str, currency: Currency, amount: float, commit: bool = True) -> Tuple[Transfer, User, User]:
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be a positive number. Please start again.")
        if str(sender_id) == str(receiver_id):
            raise ValidationError("You cannot transfer to your own wallet.")

        await self._debit(sender_id, currency, amount)
        await self._credit(receiver_id, currency, amount)

        record = Transfer(sender_id=str(sender_id), receiver_id=str(receiver_id), currency=Currency(currency), amount=amount)
        self.db.add(record)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        logger.info(f"Transfer {sender_id} -> {receiver_id}: {amount:g} {Currency(currency).value}")
        return record, await self._reload(sender_id), await self._reload(receiver_id)

    async def charge(self, user_id: str, currency: Currency, amount: float):
        """Debit without an audit record; used for order payments. Caller commits."""
        if amount:
            await self._debit(user_id, currency, amount)

    async def refund(self, user_id: str, currency: Currency, amount: float):
        """Caller commits."""
        if amount:
            await self._credit(user_id, currency, amount)
