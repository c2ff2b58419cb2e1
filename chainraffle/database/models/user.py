import uuid

from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.sql import func

from chainraffle.database.db import Base


class User(Base):
    """Участник, идентифицируется адресом кошелька (любая сеть)"""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_address = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, wallet_address={self.wallet_address})>"
