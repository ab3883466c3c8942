from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from storebot.database import Base

class Admin(Base):
    __tablename__ = "admins"

    tg_id = Column(String, primary_key=True, index=True)
    # Informational only, chat requests go to every admin regardless
    online_status = Column(Boolean, nullable=False, default=False)
    nick = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
