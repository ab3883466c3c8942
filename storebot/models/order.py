from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, JSON
from sqlalchemy.sql import func
from storebot.database import Base
from storebot.models.ledger import Currency
import enum

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    PAID = "paid"
    CANCELLED = "cancelled"

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    user_id = Column(String, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=True)
    payment = Column(Enum(Currency), nullable=False)
    total = Column(Float, nullable=True)
    receiver = Column(String, nullable=False)
    courier_id = Column(String, nullable=True)

    # admin id -> id of the notification message in that admin's chat
    admin_messages = Column(JSON, nullable=False, default=dict)
    client_message_id = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
