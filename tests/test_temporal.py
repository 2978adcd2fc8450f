from datetime import date, datetime, timezone

from shiori.agents.temporal import (
    format_date_range,
    format_event_datetime,
    format_jp_date,
    to_valid_datetime,
)


def test_same_month_range_abbreviates_end_to_day_and_weekday():
    assert format_date_range("2025-05-10", "2025-05-12") == "令和7年5月10日(土)〜12日(月)"


def test_cross_month_range_keeps_month_on_end():
    assert format_date_range("2025-05-31", "2025-06-01") == "令和7年5月31日(土)〜6月1日(日)"


def test_same_month_in_different_years_is_not_abbreviated():
    assert format_date_range("2024-05-31", "2025-05-01") == "令和6年5月31日(金)〜5月1日(木)"


def test_single_valid_side_is_formatted_standalone():
    assert format_date_range("2025-05-10", "not a date") == "令和7年5月10日(土)"
    assert format_date_range(None, "2025-05-12") == "令和7年5月12日(月)"


def test_invalid_or_missing_range_is_empty():
    assert format_date_range(None, None) == ""
    assert format_date_range("", "garbage") == ""
    assert format_jp_date({"year": 2025}) == ""


def test_first_year_of_era_is_gannen():
    assert format_jp_date("2019-05-01") == "令和元年5月1日(水)"
    assert format_jp_date("2019-04-30") == "平成31年4月30日(火)"


def test_native_and_numeric_values_are_accepted():
    assert format_jp_date(date(2025, 5, 10)) == "令和7年5月10日(土)"
    assert format_jp_date(datetime(2025, 5, 10, 23, 30, tzinfo=timezone.utc)) == "令和7年5月11日(日)"
    assert format_jp_date(0) == "昭和45年1月1日(木)"
    assert to_valid_datetime(float("nan")) is None
    assert to_valid_datetime(True) is None


def test_event_datetime_is_localized_to_tokyo():
    day, hm, ts = format_event_datetime("2025-05-10T20:00:00Z")

    assert day == "2025/05/11"
    assert hm == "05:00"
    assert ts == datetime(2025, 5, 10, 20, 0, tzinfo=timezone.utc).timestamp() * 1000


def test_event_datetime_reads_naive_values_as_tokyo_time():
    assert format_event_datetime("2025-05-10 08:05")[:2] == ("2025/05/10", "08:05")
    assert format_event_datetime("2025:05:10 08:05:00")[:2] == ("2025/05/10", "08:05")


def test_event_datetime_placeholders_for_unusable_values():
    assert format_event_datetime(None) == (None, "—", None)
    assert format_event_datetime(1715300000000) == (None, "—", None)
    assert format_event_datetime("yesterday") == (None, "—", None)


def test_instants_beyond_the_calendar_edge_are_unusable():
    edge = "9999-12-31T23:00:00-12:00"

    assert to_valid_datetime(edge) is None
    assert to_valid_datetime(253402300799000) is None
    assert to_valid_datetime(datetime(9999, 12, 31, 23, 0, tzinfo=timezone.utc)) is None
    assert format_date_range(edge, None) == ""
    assert format_date_range("2025-05-10", edge) == "令和7年5月10日(土)"
    assert format_jp_date(edge) == ""
    assert format_event_datetime(edge) == (None, "—", None)


def test_latest_tokyo_wall_time_still_formats():
    assert format_event_datetime("9999-12-31T23:00:00")[:2] == ("9999/12/31", "23:00")
