# tests/test_dates.py

from datetime import date, datetime

from ignitia.model import dates
from tests.conftest import WEDNESDAY


def test_this_week_from_wednesday_is_previous_monday():
    assert dates.this_week(WEDNESDAY) == date(2024, 5, 13)
    assert dates.next_week(WEDNESDAY) == date(2024, 5, 20)


def test_this_week_on_monday_is_same_day():
    assert dates.this_week(date(2024, 5, 13)) == date(2024, 5, 13)


def test_this_week_on_sunday_goes_back_six_days():
    assert dates.this_week(date(2024, 5, 19)) == date(2024, 5, 13)


def test_this_week_on_saturday():
    assert dates.this_week(date(2024, 5, 18)) == date(2024, 5, 13)


def test_helpers_ignore_time_of_day():
    late = datetime(2024, 5, 15, 23, 59, 59)
    assert dates.today(late) == WEDNESDAY
    assert dates.tomorrow(late) == date(2024, 5, 16)
    assert dates.yesterday(late) == date(2024, 5, 14)
    assert dates.in_days(10, late) == date(2024, 5, 25)
    assert dates.ago(15, late) == date(2024, 4, 30)


def test_helpers_default_to_now():
    assert dates.today() == datetime.now().date()


def test_parse_date_formats():
    assert dates.parse_date("2024-05-15") == WEDNESDAY
    assert dates.parse_date("05/15/2024") == WEDNESDAY


def test_parse_date_empty_or_garbage_is_zero():
    assert dates.parse_date("") == dates.ZERO_DATE
    assert dates.parse_date(None) == dates.ZERO_DATE
    assert dates.parse_date("next tuesday") == dates.ZERO_DATE


def test_format_date():
    assert dates.format_date("05/15/2024") == "2024-05-15"
    assert dates.format_date("2024-05-15") == "2024-05-15"
    assert dates.format_date("") == ""
    assert dates.format_date("someday") == "someday"
