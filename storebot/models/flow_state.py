from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON
from sqlalchemy.sql import func
from storebot.database import Base
import enum

class FlowKind(str, enum.Enum):
    CHAT = "chat"
    SUMADD = "sumadd"
    TRANSFER = "transfer"
    CHECK = "check"
    SIGNUP = "signup"
    REASON = "reason"
    BROADCAST = "broadcast"

class FlowStateRecord(Base):
    """
    Partially collected answers of one multi-step dialog.
    One row per (user, kind); `version` is bumped on every write so
    concurrent writers can use compare-and-set.
    """
    __tablename__ = "flow_states"

    user_id = Column(String, primary_key=True)
    kind = Column(Enum(FlowKind), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
