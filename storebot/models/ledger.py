from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from storebot.database import Base
import enum

class Currency(str, enum.Enum):
    TMT = "TMT"
    USDT = "USDT"

BALANCE_FIELDS = {
    Currency.TMT: "sum_tmt",
    Currency.USDT: "sum_usdt",
}

class SummUpdate(Base):
    """Audit record of an admin-performed balance change."""
    __tablename__ = "summ_updates"

    id = Column(Integer, primary_key=True, index=True)
    cashier_id = Column(String, nullable=False, index=True)
    client_id = Column(String, nullable=False, index=True)
    currency = Column(Enum(Currency), nullable=False)
    sum = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class Transfer(Base):
    """Audit record of a peer-to-peer move between wallets."""
    __tablename__ = "transfers"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(String, nullable=False, index=True)
    receiver_id = Column(String, nullable=False, index=True)
    currency = Column(Enum(Currency), nullable=False)
    amount = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
