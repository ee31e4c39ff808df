from datetime import datetime

from careassist.trend import TrendWindow, build_trend


NOW = datetime(2024, 10, 19, 18, 0)


def test_trend_points_oldest_first_with_day_labels(make_pd):
    records = [
        make_pd("2024-10-18T08:00:00", fill=2000, drain=1900),
        make_pd("2024-10-12T08:00:00", fill=2000, drain=2150),
        make_pd("2024-10-19T08:00:00", drain=None),
    ]
    series = build_trend(records, TrendWindow.SEVEN_DAYS, NOW)

    assert series.labels == ["12 Oct", "18 Oct", "19 Oct"]
    assert series.values == [150, -100, 0]
    assert series.retention
    assert len(series) == 3


def test_trend_window_excludes_older_records(make_pd):
    records = [make_pd("2024-10-01T08:00:00"), make_pd("2024-10-15T08:00:00")]
    assert len(build_trend(records, TrendWindow.SEVEN_DAYS, NOW)) == 1
    assert len(build_trend(records, "30days", NOW)) == 2


def test_trend_without_records_is_none(make_pd):
    assert build_trend([], TrendWindow.SEVEN_DAYS, NOW) is None
    assert build_trend([make_pd("2024-01-01T08:00:00")], TrendWindow.THIRTY_DAYS, NOW) is None


def test_no_retention_when_all_removed(make_pd):
    series = build_trend([make_pd("2024-10-19T08:00:00", drain=1800)], TrendWindow.SEVEN_DAYS, NOW)
    assert not series.retention


def test_window_days():
    assert TrendWindow.SEVEN_DAYS.days == 7
    assert TrendWindow("30days").days == 30
