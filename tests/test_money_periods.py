from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from rentledger.money import format_kes, money_sum, to_money
from rentledger.utils.periods import BillingPeriod, current_period, parse_period, parse_timestamp

NAIROBI = ZoneInfo("Africa/Nairobi")


class TestMoney:
    def test_rounds_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(0.1) == Decimal("0.10")
        assert to_money(20000) == Decimal("20000.00")

    @pytest.mark.parametrize("value", [None, "", "abc", True, "NaN"])
    def test_rejects_non_amounts(self, value):
        with pytest.raises(ValueError):
            to_money(value)

    def test_sum_ignores_none(self):
        assert money_sum([Decimal("1.10"), None, "2.20"]) == Decimal("3.30")

    def test_kes_display_has_no_decimals(self):
        assert format_kes(Decimal("20000.40")) == "KES 20,000"
        assert format_kes(Decimal("-1500")) == "-KES 1,500"


class TestBillingPeriod:
    def test_month_starts_at_local_midnight(self):
        period = BillingPeriod(2026, 10, NAIROBI)
        # EAT is UTC+3
        assert period.start == datetime(2026, 9, 30, 21, 0)
        assert period.end == datetime(2026, 10, 31, 21, 0)

    def test_late_utc_evening_belongs_to_next_local_month(self, app):
        assert current_period(datetime(2026, 10, 31, 22, 30)).label == "2026-11"
        assert current_period(datetime(2026, 10, 31, 20, 30)).label == "2026-10"

    def test_year_rollover(self):
        period = BillingPeriod(2026, 12, NAIROBI)
        assert period.next().label == "2027-01"
        assert BillingPeriod(2027, 1, NAIROBI).previous().label == "2026-12"

    def test_due_date_is_clamped(self):
        period = BillingPeriod(2026, 2, NAIROBI)
        assert period.due_date(31).day == 28
        assert period.due_date(0).day == 1

    def test_parse_period(self, app):
        assert parse_period("2026-03").key == (2026, 3)
        with pytest.raises(ValueError):
            parse_period("2026-13")
        with pytest.raises(ValueError):
            parse_period("March")

    def test_parse_timestamp_normalises_to_naive_utc(self):
        assert parse_timestamp("2026-10-15T12:00:00+03:00") == datetime(2026, 10, 15, 9, 0)
        assert parse_timestamp(None) is None
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")
