from __future__ import annotations

from datetime import datetime, timezone


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def log_stamp() -> str:
    """Compact local timestamp used in per-item log file names (YYYYmmdd-HHMMSS)."""
    return datetime.now().strftime("%Y%m%d-%H%M%S")
