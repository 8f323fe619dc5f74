from .auction import Auction
from .base import Base
from .bid import Bid
from .identity import IdentityUser
from .notification import AuditLogEntry, Notification
from .profile import Profile
from .trip import Trip

__all__ = [
    "Base",
    "Profile",
    "Auction",
    "Bid",
    "Trip",
    "Notification",
    "AuditLogEntry",
    "IdentityUser",
]
