from datetime import date

import pytest

from periods import resolve_period


TODAY = date(2024, 3, 15)


def test_explicit_dates_win_over_preset():
    period = resolve_period("this_month", "2024-01-01", "2024-01-31", today=TODAY)
    assert period.slug == "custom"
    assert (period.start, period.end) == (date(2024, 1, 1), date(2024, 1, 31))


def test_inverted_explicit_dates_are_allowed():
    period = resolve_period(None, "2024-02-01", "2024-01-01", today=TODAY)
    assert period.start > period.end


def test_presets():
    assert resolve_period(None, None, None, today=TODAY).start == date(2024, 2, 14)
    assert resolve_period("last_7_days", None, None, today=TODAY).start == date(2024, 3, 8)

    this_month = resolve_period("this_month", None, None, today=TODAY)
    assert (this_month.start, this_month.end) == (date(2024, 3, 1), date(2024, 3, 31))

    last_month = resolve_period("last_month", None, None, today=TODAY)
    assert (last_month.start, last_month.end) == (date(2024, 2, 1), date(2024, 2, 29))


def test_last_month_in_january_wraps_year():
    period = resolve_period("last_month", None, None, today=date(2024, 1, 10))
    assert (period.start, period.end) == (date(2023, 12, 1), date(2023, 12, 31))


def test_invalid_input_raises_value_error():
    with pytest.raises(ValueError, match="ISO dates"):
        resolve_period(None, "2024-13-01", "2024-01-31", today=TODAY)
    with pytest.raises(ValueError, match="required"):
        resolve_period("custom", "2024-01-01", None, today=TODAY)
    with pytest.raises(ValueError, match="Unknown period"):
        resolve_period("fortnight", None, None, today=TODAY)
