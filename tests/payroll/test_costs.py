"""Tests for the cost engine."""

from datetime import time
from decimal import Decimal

import pytest

from shiftlane.config import PayrollConfig
from shiftlane.errors import InvalidTimeGranularity, PromoCodeInvalid
from shiftlane.payroll.costs import CostEngine, Quote, round_cents, sum_quotes


class TestShiftQuotes:
    """Tests for quoting a single shift."""

    def test_standard_quote(self, costs):
        """7.5 hours at 25/h: 187.50 base, 22.50 fee, 210.00 total."""
        quote = costs.quote(7.5, 25.0)

        shown = quote.display()
        assert shown["base_pay"] == Decimal("187.50")
        assert shown["service_fee"] == Decimal("22.50")
        assert shown["discount"] == Decimal("0.00")
        assert shown["total_cost"] == Decimal("210.00")

    def test_quote_window_end_to_end(self, costs):
        quote = costs.quote_window(time(9, 0), time(17, 0), 30, 25.0)
        assert quote.hours == 7.5
        assert quote.total_cost == pytest.approx(210.0)

    def test_quote_window_rejects_off_grid_times(self, costs):
        with pytest.raises(InvalidTimeGranularity):
            costs.quote_window(time(9, 5), time(17, 0), 30, 25.0)

    @pytest.mark.parametrize(
        "hours,rate", [(1.0, 17.7), (3.25, 23.15), (8.0, 31.99), (11.75, 42.5), (0.25, 20.0)]
    )
    def test_total_is_base_plus_fee_without_promo(self, costs, hours, rate):
        quote = costs.quote(hours, rate)
        assert quote.total_cost == pytest.approx(quote.base_pay + quote.service_fee)
        assert quote.service_fee == pytest.approx(quote.base_pay * 0.12)

    def test_fee_rate_comes_from_config(self, promo_codes):
        engine = CostEngine(PayrollConfig(service_fee_rate=0.2), promo_codes)
        quote = engine.quote(10, 20.0)
        assert quote.service_fee == pytest.approx(40.0)

    def test_zero_hours(self, costs):
        quote = costs.quote(0, 25.0)
        assert quote.total_cost == 0.0

    @pytest.mark.parametrize("hours", [-1, float("nan"), float("inf"), True, "8"])
    def test_invalid_hours(self, costs, hours):
        with pytest.raises(ValueError):
            costs.quote(hours, 25.0)

    def test_to_dict_uses_cent_strings(self, costs):
        data = costs.quote(7.5, 25.0).to_dict()
        assert data["total_cost"] == "210.00"
        assert data["hours"] == 7.5


class TestRounding:
    """Tests for display rounding."""

    def test_round_half_up(self):
        assert round_cents(2.675) == Decimal("2.68")
        assert round_cents(0.125) == Decimal("0.13")
        assert round_cents(1.004) == Decimal("1.00")

    def test_full_precision_is_kept_internally(self, costs):
        quote = costs.quote(1.0, 10.005)
        assert quote.base_pay == 10.005
        assert quote.display()["base_pay"] == Decimal("10.01")


class TestPromoCodes:
    """Tests for promo discounts on shift quotes."""

    def test_freejob_waives_everything(self, costs):
        """FREEJOB on a 210.00 quote discounts 210.00 to a 0.00 total."""
        quote = costs.quote(7.5, 25.0, "FREEJOB")
        shown = quote.display()
        assert shown["discount"] == Decimal("210.00")
        assert shown["total_cost"] == Decimal("0.00")
        assert quote.promo_code == "FREEJOB"

    def test_freejob_cannot_be_reused(self, costs):
        costs.quote(7.5, 25.0, "FREEJOB")
        with pytest.raises(PromoCodeInvalid, match="already been used"):
            costs.quote(7.5, 25.0, "FREEJOB")

    def test_free_shift_posting_waives_the_fee(self, costs):
        quote = costs.quote(7.5, 25.0, "FREESHIFT")
        assert quote.discount == pytest.approx(22.5)
        assert quote.total_cost == pytest.approx(187.5)

    def test_save10_takes_ten_percent_of_the_fee(self, costs):
        quote = costs.quote(7.5, 25.0, "save10")
        assert quote.discount == pytest.approx(2.25)
        assert quote.total_cost == pytest.approx(207.75)
        assert quote.promo_code == "SAVE10"

    def test_unknown_code(self, costs):
        with pytest.raises(PromoCodeInvalid, match="not found") as exc_info:
            costs.quote(8, 25.0, "NOPE")
        assert exc_info.value.code == "NOPE"

    def test_no_registry(self):
        with pytest.raises(PromoCodeInvalid, match="no promo registry"):
            CostEngine().quote(8, 25.0, "FREEJOB")

    def test_preview_does_not_consume(self, costs, promo_codes):
        costs.quote(7.5, 25.0, "FREEJOB", consume_promo=False)
        assert promo_codes.get_code("FREEJOB").used is False
        costs.quote(7.5, 25.0, "FREEJOB", used_by="venue-1")
        promo = promo_codes.get_code("FREEJOB")
        assert promo.used is True
        assert promo.used_by == "venue-1"

    def test_requote_keeps_discount_of_consumed_code(self, costs):
        costs.quote(7.5, 25.0, "SAVE10")
        quote = costs.requote(8.0, 25.0, "SAVE10")
        assert quote.discount == pytest.approx(2.4)
        assert quote.promo_code == "SAVE10"


class TestBlockQuotes:
    """Tests for quoting several shifts together."""

    def test_block_sums_before_rounding(self, costs):
        quote = costs.quote_block([(7.5, 25.0), (7.5, 25.0), (4.0, 25.0)])
        assert quote.hours == 19.0
        assert quote.hourly_rate == 25.0
        assert quote.display()["total_cost"] == Decimal("532.00")

    def test_mixed_rates_have_no_single_rate(self, costs):
        quote = costs.quote_block([(8, 25.0), (8, 30.0)])
        assert quote.hourly_rate is None
        assert quote.base_pay == pytest.approx(440.0)

    def test_empty_block(self, costs):
        with pytest.raises(ValueError):
            costs.quote_block([])

    def test_sum_quotes(self, costs):
        total = sum_quotes([costs.quote(7.5, 25.0), costs.quote(4.0, 25.0)])
        assert isinstance(total, Quote)
        assert total.total_cost == pytest.approx(322.0)


class TestJobPostingQuotes:
    """Tests for the permanent-job fee schedule."""

    def test_listing_fee_only(self, costs):
        quote = costs.quote_job_posting()
        assert quote.display()["total_cost"] == Decimal("50.00")

    def test_weekly_cost_share(self, costs):
        quote = costs.quote_job_posting(1000.0)
        assert quote.service_fee == pytest.approx(50.0)
        assert quote.total_cost == pytest.approx(100.0)

    def test_freejob_waives_job_posting(self, costs):
        quote = costs.quote_job_posting(1000.0, "FREEJOB")
        assert quote.total_cost == 0.0
        assert quote.discount == pytest.approx(100.0)

    @pytest.mark.parametrize("code", ["SAVE10", "FREESHIFT"])
    def test_shift_only_codes_do_not_apply(self, costs, promo_codes, code):
        with pytest.raises(PromoCodeInvalid, match="does not apply"):
            costs.quote_job_posting(1000.0, code)
        assert promo_codes.get_code(code).used is False
