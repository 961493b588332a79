"""Shared helpers for storage backends."""

from __future__ import annotations

from datetime import datetime, timezone


def dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def matches_where(metadata: dict, where: dict) -> bool:
    """Equality filter over metadata keys. An empty filter matches everything."""
    return all(metadata.get(key) == value for key, value in where.items())


def history_key(prefix: str, thread_id: str) -> str:
    return f"{prefix}:{thread_id}:history"


def summary_key(prefix: str, thread_id: str) -> str:
    return f"{prefix}:{thread_id}:summary"
