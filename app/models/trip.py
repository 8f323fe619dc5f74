"""SQLAlchemy model for Trip."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id, utcnow


class Trip(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    auction_id: Mapped[str] = mapped_column(String(36), ForeignKey("auctions.id"), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    consigner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    # Статус поездки не зависит от статуса аукциона
    status: Mapped[str] = mapped_column(
        Enum("in_progress", "completed", "cancelled", name="trip_status_enum"),
        default="in_progress",
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivery_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Trip(id={self.id}, auction_id={self.auction_id}, status='{self.status}')>"
