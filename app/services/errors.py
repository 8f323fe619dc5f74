"""Domain errors raised by the auction services.

Each error carries the HTTP status the admin API answers with, so routers do
not have to translate them one by one.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError


class AuctionServiceError(Exception):
    """Base class for domain errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(AuctionServiceError):
    """Bad input shape or value, rejected before any store call."""

    status_code = 400


class InvalidAmount(InvalidInput):
    pass


class InvalidStatus(InvalidInput):
    pass


class NotFound(AuctionServiceError):
    status_code = 404


class Conflict(AuctionServiceError):
    """The current state does not permit the requested change."""

    status_code = 409


class ServiceUnavailable(AuctionServiceError):
    """Store unreachable or required configuration missing."""

    status_code = 503


class CascadeStepError(ServiceUnavailable):
    """A cascading-delete step failed; earlier steps stay committed."""

    status_code = 500

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"Failed to {step}: {cause}")
        self.step = step
        self.cause = cause


@contextmanager
def store_guard(action: str) -> Iterator[None]:
    """Translate store connectivity failures into ``ServiceUnavailable``."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise ServiceUnavailable(f"Store unavailable while {action}: {e.orig or e}") from e
