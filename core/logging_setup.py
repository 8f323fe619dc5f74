from __future__ import annotations

import logging
import os
import sys


class KVFormatter(logging.Formatter):
    """Formatter that appends common extra fields if present.

    Keeps classic human-readable format while surfacing structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        keys = (
            "action",
            "event",
            "step",
            "auction_id",
            "bid_id",
            "user_id",
            "consigner_id",
            "driver_id",
            "status",
            "previous_status",
            "amount",
            "previous_amount",
            "reelected",
            "was_winning_bid",
            "bids_count",
            "attempt",
            "rows",
            "topic",
            "channel",
            "interval",
            "reason",
            "error",
            "took_ms",
        )
        parts: list[str] = []
        for k in keys:
            if hasattr(record, k):
                v = getattr(record, k)
                if v is None:
                    continue
                if k in {"error", "reason"}:
                    parts.append(f"{k}={v!r}")
                else:
                    parts.append(f"{k}={v}")
        if parts:
            return f"{base} | {' '.join(parts)}"
        return base


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Configure root logger with KVFormatter. Safe to call multiple times."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    root = logging.getLogger()
    root.setLevel(level)

    # Drop existing handlers to avoid duplicates on reloads
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    formatter = KVFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # Tweak noisy loggers if needed
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root
