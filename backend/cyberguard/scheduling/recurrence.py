# cyberguard/scheduling/recurrence.py
"""
Per-tenant recurrence rules.

A tenant's schedule is evaluated against the *tenant-local* wall clock:

    now (UTC instant) ──► ZoneInfo(tenant tz) ──► LocalClock(hh:mm, weekday, date)

Conversions always go through the IANA tz database (zoneinfo), never a
fixed UTC offset, so DST transitions shift the UTC firing instant while the
local firing time stays put.

The once-per-period gate reprojects the stored ``last_auto_scan_at`` instant
into the same zone and compares calendar dates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = timezone.utc

FREQUENCIES = ("daily", "weekly", "manual")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

FULL_PROBE_SET = (
    "port-scan",
    "ssl-check",
    "subdomain-enum",
    "breach-check",
    "directory-scan",
    "risk-calc",
)
DEFAULT_SCAN_TYPES = ("port-scan", "ssl-check", "breach-check", "risk-calc")

DEFAULT_SCAN_TIME = "02:00"
DEFAULT_SCAN_DAY = "monday"
DEFAULT_TIMEZONE = "UTC"


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_scan_time(value) -> str:
    """
    Zero-pad a scan time to ``HH:MM``. Raises ValueError if it is not a
    valid 24h time.

        "2:5"   -> "02:05"
        "14:30" -> "14:30"
    """
    raw = str(value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2:
        raise ValueError(f"scan time must be HH:MM, got {value!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"scan time must be HH:MM, got {value!r}") from None
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"scan time out of range: {value!r}")
    return f"{hh:02d}:{mm:02d}"


def normalize_scan_day(value) -> str:
    day = str(value or "").strip().lower()
    if day not in WEEKDAYS:
        raise ValueError(f"scan day must be a weekday name, got {value!r}")
    return day


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    ZoneInfo for ``name``; UTC (with a warning) for anything the tz
    database does not know. Never raises.
    """
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError, TypeError, OSError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive DB timestamp; convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Typed schedule config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleConfig:
    """
    One tenant's schedule with defaults applied.

    Build through :meth:`build` so every instance carries a zero-padded
    scan time, a known frequency and a non-empty probe set.
    """
    tenant_id: int
    auto_scan_enabled: bool = True
    frequency: str = "daily"
    scan_time: str = DEFAULT_SCAN_TIME
    scan_day: str = DEFAULT_SCAN_DAY
    scan_types: tuple = field(default=FULL_PROBE_SET)
    timezone: str = DEFAULT_TIMEZONE
    last_auto_scan_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        tenant_id: int,
        *,
        auto_scan_enabled=True,
        frequency=None,
        scan_time=None,
        scan_day=None,
        scan_types: Optional[Iterable[str]] = None,
        timezone=None,
        last_auto_scan_at=None,
    ) -> "ScheduleConfig":
        freq = (frequency or "daily").strip().lower()
        if freq not in FREQUENCIES:
            logger.warning("Tenant %s: unknown frequency %r, treating as manual", tenant_id, frequency)
            freq = "manual"

        try:
            hhmm = normalize_scan_time(scan_time or DEFAULT_SCAN_TIME)
        except ValueError:
            logger.warning("Tenant %s: invalid scan time %r, using %s", tenant_id, scan_time, DEFAULT_SCAN_TIME)
            hhmm = DEFAULT_SCAN_TIME

        try:
            day = normalize_scan_day(scan_day or DEFAULT_SCAN_DAY)
        except ValueError:
            logger.warning("Tenant %s: invalid scan day %r, using %s", tenant_id, scan_day, DEFAULT_SCAN_DAY)
            day = DEFAULT_SCAN_DAY

        types = tuple(t for t in (scan_types or ()) if t)

        return cls(
            tenant_id=tenant_id,
            auto_scan_enabled=bool(auto_scan_enabled),
            frequency=freq,
            scan_time=hhmm,
            scan_day=day,
            scan_types=types or FULL_PROBE_SET,
            timezone=(timezone or DEFAULT_TIMEZONE),
            last_auto_scan_at=last_auto_scan_at,
        )

    @property
    def zone(self) -> ZoneInfo:
        return resolve_timezone(self.timezone)


@dataclass(frozen=True)
class LocalClock:
    hhmm: str
    weekday: str
    date: date


def local_clock(now: datetime, tz: ZoneInfo) -> LocalClock:
    """Wall-clock reading of the UTC instant ``now`` in ``tz``."""
    local = as_utc(now).astimezone(tz)
    return LocalClock(
        hhmm=f"{local.hour:02d}:{local.minute:02d}",
        weekday=WEEKDAYS[local.weekday()],
        date=local.date(),
    )


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def is_due(config: ScheduleConfig, clock: LocalClock) -> bool:
    """Daily: time matches. Weekly: day and time match. Manual: never."""
    if not config.auto_scan_enabled:
        return False
    if config.frequency == "daily":
        return config.scan_time == clock.hhmm
    if config.frequency == "weekly":
        return config.scan_day == clock.weekday and config.scan_time == clock.hhmm
    return False


def already_triggered(config: ScheduleConfig, clock: LocalClock, tz: ZoneInfo) -> bool:
    """
    True when the last trigger happened on the same tenant-local calendar
    date as ``clock``. The stored instant is reprojected into ``tz``;
    comparing raw UTC dates would double-fire or skip near midnight.
    """
    last = as_utc(config.last_auto_scan_at)
    if last is None:
        return False
    return last.astimezone(tz).date() == clock.date
