"""
Tests for tenant-local recurrence rules: normalization, due predicate,
once-per-period gate, DST and timezone fallback.
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from cyberguard.scheduling.recurrence import (
    DEFAULT_SCAN_TIME,
    FULL_PROBE_SET,
    ScheduleConfig,
    already_triggered,
    is_due,
    local_clock,
    normalize_scan_time,
    resolve_timezone,
)

NEW_YORK = ZoneInfo("America/New_York")


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def due_at(config, now):
    return is_due(config, local_clock(now, config.zone))


class TestNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("2:5", "02:05"),
        ("02:00", "02:00"),
        ("14:30", "14:30"),
        (" 9:00 ", "09:00"),
        ("23:59", "23:59"),
    ])
    def test_zero_pads(self, raw, expected):
        assert normalize_scan_time(raw) == expected

    @pytest.mark.parametrize("raw", ["", "24:00", "12:60", "noon", "12", "1:2:3", None])
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValueError):
            normalize_scan_time(raw)

    def test_build_applies_defaults(self):
        config = ScheduleConfig.build(1, frequency="DAILY", scan_time="bogus", scan_day="Someday", scan_types=[])
        assert config.frequency == "daily"
        assert config.scan_time == DEFAULT_SCAN_TIME
        assert config.scan_day == "monday"
        assert config.scan_types == FULL_PROBE_SET

    def test_unknown_frequency_becomes_manual(self):
        assert ScheduleConfig.build(1, frequency="hourly").frequency == "manual"

    def test_scan_day_lower_cased(self):
        assert ScheduleConfig.build(1, scan_day="Friday").scan_day == "friday"


class TestTimezoneFallback:
    @pytest.mark.parametrize("name", ["Mars/Olympus_Mons", "", None, "America", "../etc/passwd"])
    def test_unknown_zone_falls_back_to_utc(self, name):
        assert resolve_timezone(name) == ZoneInfo("UTC")

    def test_known_zone(self):
        assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")

    def test_bad_zone_still_evaluates_in_utc(self):
        config = ScheduleConfig.build(1, scan_time="02:00", timezone="Not/AZone")
        assert due_at(config, utc(2026, 10, 17, 2, 0))


class TestDuePredicate:
    def test_daily_matches_exact_minute(self):
        config = ScheduleConfig.build(1, frequency="daily", scan_time="02:00")
        assert due_at(config, utc(2026, 10, 17, 2, 0, 30))
        assert not due_at(config, utc(2026, 10, 17, 2, 1))
        assert not due_at(config, utc(2026, 10, 17, 1, 59))

    def test_weekly_needs_day_and_time(self):
        config = ScheduleConfig.build(1, frequency="weekly", scan_day="monday", scan_time="09:00")
        assert due_at(config, utc(2026, 10, 19, 9, 0))      # Monday
        assert not due_at(config, utc(2026, 10, 20, 9, 0))  # Tuesday
        assert not due_at(config, utc(2026, 10, 19, 9, 1))

    def test_manual_never_due(self):
        config = ScheduleConfig.build(1, frequency="manual", scan_time="02:00")
        assert not due_at(config, utc(2026, 10, 17, 2, 0))

    def test_disabled_never_due(self):
        config = ScheduleConfig.build(1, auto_scan_enabled=False, scan_time="02:00")
        assert not due_at(config, utc(2026, 10, 17, 2, 0))

    def test_uses_tenant_local_time(self):
        config = ScheduleConfig.build(1, scan_time="09:00", timezone="Asia/Tokyo")
        assert due_at(config, utc(2026, 10, 17, 0, 0))
        assert not due_at(config, utc(2026, 10, 17, 9, 0))

    def test_weekly_uses_local_weekday(self):
        # Sunday 23:30 UTC is Monday 08:30 in Tokyo
        config = ScheduleConfig.build(1, frequency="weekly", scan_day="monday", scan_time="08:30", timezone="Asia/Tokyo")
        assert due_at(config, utc(2026, 10, 18, 23, 30))


class TestDaylightSaving:
    def test_new_york_before_and_after_spring_forward(self):
        config = ScheduleConfig.build(1, scan_time="02:00", timezone="America/New_York")
        # EST (UTC-5) on Saturday, EDT (UTC-4) on Monday
        assert due_at(config, utc(2026, 3, 7, 7, 0))
        assert not due_at(config, utc(2026, 3, 7, 6, 0))
        assert due_at(config, utc(2026, 3, 9, 6, 0))
        assert not due_at(config, utc(2026, 3, 9, 7, 0))

    def test_new_york_fall_back(self):
        config = ScheduleConfig.build(1, scan_time="09:00", timezone="America/New_York")
        assert due_at(config, utc(2026, 10, 31, 13, 0))  # EDT
        assert due_at(config, utc(2026, 11, 2, 14, 0))   # EST

    def test_nonexistent_local_time_does_not_fire(self):
        # 02:00 never appears on a New York clock on 2026-03-08
        config = ScheduleConfig.build(1, scan_time="02:00", timezone="America/New_York")
        start = utc(2026, 3, 8, 0, 0)
        fired = [
            start + timedelta(minutes=m)
            for m in range(24 * 60)
            if due_at(config, start + timedelta(minutes=m))
        ]
        assert fired == []

    def test_repeated_local_hour_is_gated_to_one_trigger(self):
        # 01:30 happens twice on 2026-11-01 in New York
        config = ScheduleConfig.build(1, scan_time="01:30", timezone="America/New_York")
        first, second = utc(2026, 11, 1, 5, 30), utc(2026, 11, 1, 6, 30)
        assert due_at(config, first) and due_at(config, second)

        after_first = ScheduleConfig.build(
            1, scan_time="01:30", timezone="America/New_York",
            last_auto_scan_at=first.replace(tzinfo=None),
        )
        assert already_triggered(after_first, local_clock(second, NEW_YORK), NEW_YORK)


class TestGate:
    def test_never_triggered(self):
        config = ScheduleConfig.build(1)
        assert not already_triggered(config, local_clock(utc(2026, 10, 17, 2, 0), ZoneInfo("UTC")), ZoneInfo("UTC"))

    def test_same_local_day(self):
        config = ScheduleConfig.build(1, last_auto_scan_at=datetime(2026, 10, 17, 2, 0))
        clock = local_clock(utc(2026, 10, 17, 2, 1), ZoneInfo("UTC"))
        assert already_triggered(config, clock, ZoneInfo("UTC"))

    def test_next_local_day(self):
        config = ScheduleConfig.build(1, last_auto_scan_at=datetime(2026, 10, 17, 2, 0))
        clock = local_clock(utc(2026, 10, 18, 2, 0), ZoneInfo("UTC"))
        assert not already_triggered(config, clock, ZoneInfo("UTC"))

    def test_compares_local_dates_not_utc_dates(self):
        tokyo = ZoneInfo("Asia/Tokyo")
        # 2026-10-18 15:30 UTC is 2026-10-19 00:30 in Tokyo
        config = ScheduleConfig.build(1, timezone="Asia/Tokyo", last_auto_scan_at=datetime(2026, 10, 18, 15, 30))
        later_same_local_day = local_clock(utc(2026, 10, 19, 14, 0), tokyo)
        assert already_triggered(config, later_same_local_day, tokyo)

        # Different UTC date from the stored instant's, same local date
        assert datetime(2026, 10, 18, 15, 30).date() != utc(2026, 10, 19, 14, 0).date()

    def test_aware_timestamp_is_reprojected(self):
        la = ZoneInfo("America/Los_Angeles")
        config = ScheduleConfig.build(1, timezone="America/Los_Angeles", last_auto_scan_at=utc(2026, 10, 18, 6, 0))
        # 06:00 UTC on the 18th is 23:00 on the 17th in Los Angeles
        assert already_triggered(config, local_clock(utc(2026, 10, 18, 5, 0), la), la)
        assert not already_triggered(config, local_clock(utc(2026, 10, 18, 8, 0), la), la)
