"""SQLAlchemy model for Bid."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id, utcnow

if TYPE_CHECKING:
    from .auction import Auction
    from .profile import Profile


class Bid(Base):
    __tablename__ = "auction_bids"
    __table_args__ = (
        UniqueConstraint("auction_id", "user_id", name="uq_auction_bids_auction_user"),
        Index("ix_auction_bids_auction_amount", "auction_id", "amount"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    auction_id: Mapped[str] = mapped_column(String(36), ForeignKey("auctions.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_winning_bid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    # Relationships
    auction: Mapped["Auction"] = relationship("Auction", foreign_keys=[auction_id], back_populates="bids")
    bidder: Mapped["Profile"] = relationship("Profile", back_populates="bids")

    def __repr__(self) -> str:
        return f"<Bid(id={self.id}, auction_id={self.auction_id}, user_id={self.user_id}, amount={self.amount})>"
