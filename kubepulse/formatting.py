"""Human-readable rendering helpers shared by the aggregator and pod index."""

from __future__ import annotations

from datetime import UTC, datetime


def format_age(created_at: datetime | None, now: datetime | None = None) -> str:
    """Render the time since *created_at* as ``Nd``, ``Nh``, ``Nm`` or ``Ns``.

    The largest whole unit wins.  Returns ``Unknown`` when the timestamp is
    missing.  Timestamps in the future render as ``0s``.
    """
    if created_at is None:
        return "Unknown"
    now = now or datetime.now(tz=UTC)
    seconds = max(0, int((now - created_at).total_seconds()))
    days, rem = divmod(seconds, 86400)
    if days > 0:
        return f"{days}d"
    hours, rem = divmod(rem, 3600)
    if hours > 0:
        return f"{hours}h"
    minutes, secs = divmod(rem, 60)
    if minutes > 0:
        return f"{minutes}m"
    return f"{secs}s"

