"""
Money and schedule helper tests
"""

from datetime import date
from decimal import Decimal

from family_finance.models import Frequency
from family_finance.utils.money import percent_of, ratio_percent, to_money
from family_finance.utils.schedule import add_months, advance_date, iter_months, month_bounds
from family_finance.utils.text import names_match, normalize_name


class TestMoney:
    def test_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(0.1) == Decimal("0.10")
        assert to_money(None) == Decimal("0.00")

    def test_percent_of(self):
        assert percent_of(Decimal("3000"), Decimal("33.33")) == Decimal("999.90")
        assert percent_of(Decimal("1000.01"), Decimal("50")) == Decimal("500.01")

    def test_ratio_percent_zero_whole(self):
        assert ratio_percent(Decimal("5"), Decimal("0")) == Decimal("0.00")
        assert ratio_percent(Decimal("25"), Decimal("200")) == Decimal("12.50")


class TestSchedule:
    def test_add_months_clamps_day(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)
        assert add_months(date(2025, 3, 31), -1) == date(2025, 2, 28)

    def test_advance_date(self):
        start = date(2025, 1, 31)
        assert advance_date(start, Frequency.WEEKLY) == date(2025, 2, 7)
        assert advance_date(start, Frequency.BIWEEKLY) == date(2025, 2, 14)
        assert advance_date(start, Frequency.MONTHLY) == date(2025, 2, 28)
        assert advance_date(start, Frequency.QUARTERLY) == date(2025, 4, 30)
        assert advance_date(start, Frequency.ANNUAL) == date(2026, 1, 31)
        assert advance_date(start, Frequency.ONCE) is None

    def test_month_helpers(self):
        assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
        months = list(iter_months(date(2024, 11, 20), date(2025, 2, 1)))
        assert months == [date(2024, 11, 1), date(2024, 12, 1), date(2025, 1, 1), date(2025, 2, 1)]


class TestNames:
    def test_normalize(self):
        assert normalize_name("Netflix.com  (Monthly)") == "netflixcommonthly"
        assert normalize_name(None) == ""

    def test_match_is_containment(self):
        assert names_match("City Power", "CITY POWER & LIGHT")
        assert not names_match("Landlord", "Grocer")
        assert not names_match("", "anything")
