from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from dosewatch.core import timez

TUNIS = ZoneInfo("Africa/Tunis")
PARIS = ZoneInfo("Europe/Paris")


def test_daily_rule_gives_one_instant():
    out = timez.day_instants(date(2025, 6, 2), time(8, 0), TUNIS)
    assert out == [datetime(2025, 6, 2, 8, 0, tzinfo=TUNIS)]


def test_interval_rule_stays_on_the_day():
    out = timez.day_instants(date(2025, 6, 2), time(8, 0), TUNIS, interval_hours=6)
    assert [d.hour for d in out] == [8, 14, 20]


def test_interval_across_dst_change_keeps_real_spacing():
    # 30 March 2025: Paris jumps from 02:00 to 03:00
    out = timez.day_instants(date(2025, 3, 30), time(0, 0), PARIS, interval_hours=8)
    assert [d.hour for d in out] == [0, 9, 17]


def test_db_round_trip_is_naive_utc():
    local = datetime(2025, 6, 2, 8, 0, tzinfo=TUNIS)
    naive = timez.to_db(local)
    assert naive == datetime(2025, 6, 2, 7, 0) and naive.tzinfo is None
    assert timez.from_db(naive) == local


def test_iso_weekday():
    assert timez.iso_weekday(date(2025, 6, 2)) == 1
    assert timez.iso_weekday(date(2025, 6, 8)) == 7
