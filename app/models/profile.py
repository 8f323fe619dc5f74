"""SQLAlchemy model for Profile (consigner or driver)."""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id, utcnow

if TYPE_CHECKING:
    from .auction import Auction
    from .bid import Bid


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role: Mapped[str] = mapped_column(
        Enum("consigner", "driver", name="profile_role_enum"),
        nullable=False,
        index=True,
    )
    username: Mapped[str | None] = mapped_column(String)
    first_name: Mapped[str | None] = mapped_column(String)
    last_name: Mapped[str | None] = mapped_column(String)
    email: Mapped[str | None] = mapped_column(String)
    phone_number: Mapped[str | None] = mapped_column(String, index=True)
    address: Mapped[str | None] = mapped_column(String)
    # Только для водителей
    vehicle_type: Mapped[str | None] = mapped_column(String)
    vehicle_number: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    auctions: Mapped[list["Auction"]] = relationship(
        "Auction", foreign_keys="[Auction.created_by]", back_populates="consigner"
    )
    bids: Mapped[list["Bid"]] = relationship("Bid", back_populates="bidder")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.username or "Unknown User"

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, role='{self.role}', username={self.username!r})>"
