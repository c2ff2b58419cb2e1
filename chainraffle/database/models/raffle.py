import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Text, Uuid, CheckConstraint
from sqlalchemy.sql import func

from chainraffle.database.db import Base
from chainraffle.utils.helpers import as_utc, utcnow

RAFFLE_STATUSES = ("draft", "live", "closed", "completed")


class Raffle(Base):
    __tablename__ = "raffles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    prize_amount = Column(Numeric(36, 18), nullable=False, default=0)
    prize_symbol = Column(String(16), nullable=False, default="ETH")
    ticket_price = Column(Numeric(36, 18), nullable=False, default=0)  # в валюте приза
    max_tickets = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="draft")  # draft | live | closed | completed
    receiving_address = Column(String, nullable=False)  # адрес для оплаты, в публичные ответы не попадает
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    winner_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    winner_drawn_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("max_tickets > 0", name="ck_raffles_max_tickets_positive"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in RAFFLE_STATUSES) + ")", name="ck_raffles_status"
        ),
    )

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return as_utc(self.ends_at) <= now

    def is_drawn(self) -> bool:
        return self.winner_user_id is not None or self.status == "completed"

    def __repr__(self):
        return f"<Raffle(id={self.id}, title={self.title}, status={self.status}, max_tickets={self.max_tickets})>"
