from sqlalchemy import Column, String, Float, DateTime
from sqlalchemy.sql import func
from storebot.database import Base

class User(Base):
    __tablename__ = "users"

    # Telegram id, kept as text
    id = Column(String, primary_key=True, index=True)
    # Not unique, see generate_wal_num
    wal_num = Column(String(8), index=True, nullable=False)
    sum_tmt = Column(Float, nullable=False, default=0.0)
    sum_usdt = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
