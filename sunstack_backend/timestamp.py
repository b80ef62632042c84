from __future__ import annotations

from datetime import datetime, timedelta, timezone

# SER time stamps are .NET ticks: 100 ns intervals since 0001-01-01 00:00:00 UTC
TICKS_PER_SECOND = 10_000_000
UNIX_EPOCH_TICKS = 621_355_968_000_000_000

_DOTNET_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)


def ticks_to_unix(ticks: int) -> float:
    """Convert .NET ticks to Unix seconds."""
    return (int(ticks) - UNIX_EPOCH_TICKS) / TICKS_PER_SECOND


def unix_to_ticks(unix_seconds: float) -> int:
    return int(round(unix_seconds * TICKS_PER_SECOND)) + UNIX_EPOCH_TICKS


def ticks_to_datetime(ticks: int) -> datetime:
    """Convert .NET ticks to an aware UTC datetime."""
    return _DOTNET_EPOCH + timedelta(microseconds=int(ticks) // 10)


def datetime_to_ticks(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt.astimezone(timezone.utc) - _DOTNET_EPOCH
    return (delta.days * 86_400 + delta.seconds) * TICKS_PER_SECOND + delta.microseconds * 10


def ticks_to_iso(ticks: int) -> str | None:
    if not ticks:
        return None
    try:
        return ticks_to_datetime(ticks).isoformat()
    except OverflowError:
        return None
