"""SQLAlchemy model for Auction."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id, utcnow

if TYPE_CHECKING:
    from .bid import Bid
    from .profile import Profile


class Auction(Base):
    __tablename__ = "auctions"
    __table_args__ = (
        Index("ix_auctions_created_by_status", "created_by", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    vehicle_type: Mapped[str | None] = mapped_column(String)
    body_type: Mapped[str | None] = mapped_column(String)
    wheel_type: Mapped[int | None] = mapped_column(Integer)
    length_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    length_unit: Mapped[str | None] = mapped_column(String)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consignment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(
        Enum("active", "completed", "cancelled", "incomplete", name="auction_status_enum"),
        default="active",
        nullable=False,
        index=True,
    )
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    winner_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)
    # Ссылка на ставку: перед удалением ставки её нужно обнулить
    winning_bid_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("auction_bids.id", use_alter=True, name="fk_auctions_winning_bid_id"),
        nullable=True,
        index=True,
    )
    # Кэшированные агрегаты, пересчитываются после каждой мутации ставок
    bid_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lowest_bid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    highest_bid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    consigner: Mapped["Profile"] = relationship("Profile", foreign_keys=[created_by], back_populates="auctions")
    winner: Mapped[Optional["Profile"]] = relationship("Profile", foreign_keys=[winner_id])
    bids: Mapped[list["Bid"]] = relationship("Bid", foreign_keys="[Bid.auction_id]", back_populates="auction")

    def __repr__(self) -> str:
        return f"<Auction(id={self.id}, status='{self.status}', bid_count={self.bid_count})>"
