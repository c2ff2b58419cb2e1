import uuid

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Uuid
from sqlalchemy.sql import func

from chainraffle.database.db import Base


class RaffleEntry(Base):
    __tablename__ = "raffle_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    raffle_id = Column(Uuid, ForeignKey("raffles.id", ondelete="RESTRICT"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    tx_hash = Column(String, nullable=False)  # доказательство оплаты
    quantity = Column(Integer, nullable=False, default=1)
    email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        # Один кошелек - одна запись в розыгрыше
        UniqueConstraint('raffle_id', 'user_id', name='uq_raffle_entries_raffle_user'),
        CheckConstraint("quantity > 0", name="ck_raffle_entries_quantity_positive"),
    )

    def __repr__(self):
        return f"<RaffleEntry(id={self.id}, raffle_id={self.raffle_id}, user_id={self.user_id}, quantity={self.quantity})>"
