from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tourbook.db.session import Base

class PaymentAttemptRecord(Base):
    __tablename__ = "payment_attempts"

    reference: Mapped[str] = mapped_column(String(64), primary_key=True)  # client-generated, one per attempt
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    tour_id: Mapped[str] = mapped_column(String(64), default="")
    email: Mapped[str] = mapped_column(String(320), default="")
    amount: Mapped[int] = mapped_column(Integer)  # billing minor units
    currency: Mapped[str] = mapped_column(String(10), default="GHS")
    state: Mapped[str] = mapped_column(String(30), default="initializing")  # initializing, awaiting_user_action, settled, failed, cancelled
    verification_status: Mapped[str] = mapped_column(String(20), nullable=True)  # success, failed, pending
    error: Mapped[str] = mapped_column(String(500), default="")
    booking_ref: Mapped[str] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
