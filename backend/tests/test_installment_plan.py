from datetime import date

import pytest

from storeledger.errors import ToleranceExceededError, ValidationError
from storeledger.services.installment_service import build_schedule, compute_installment_plan


G = 100_000
FLOOR = 200_000


def plan(price, **kwargs):
    kwargs.setdefault("granularity", G)
    kwargs.setdefault("tolerance_floor", FLOOR)
    return compute_installment_plan(price, **kwargs)


def test_twelve_periods_at_two_percent():
    result = plan(12_000_000, periods=12, monthly_rate_bps=200, down_payment=2_000_000)

    assert result.principal == 10_000_000
    assert result.total_interest == 2_400_000
    assert result.financed_total == 14_400_000
    assert result.financed_total % G == 0
    assert result.remaining == 12_400_000
    assert result.period_count == 12
    assert result.period_amount == 1_033_334
    assert result.tolerance == 200_000
    assert abs(12 * result.period_amount - result.remaining) <= result.tolerance
    assert result.within_tolerance is True


def test_financed_total_rounds_up_to_granularity():
    result = plan(1_234_567, periods=3, monthly_rate_bps=150)

    assert result.financed_total % G == 0
    assert result.financed_total >= 1_234_567 + result.total_interest
    assert result.financed_total - (1_234_567 + result.total_interest) < G


def test_no_interest_no_down_payment():
    result = plan(6_000_000, periods=6)

    assert result.financed_total == 6_000_000
    assert result.period_amount == 1_000_000
    assert result.installments_total == result.remaining


def test_period_amount_derives_period_count():
    result = plan(12_000_000, period_amount=1_040_000, monthly_rate_bps=200, down_payment=2_000_000)

    assert result.period_count == 12
    assert result.remaining == 12_400_000
    assert result.period_amount == 1_040_000
    assert result.period_count * result.period_amount >= result.remaining
    assert (result.period_count - 1) * result.period_amount < result.remaining


def test_derived_period_count_still_checks_tolerance():
    # 12 periods of 1,100,000 overshoot the 12,400,000 debt by 800,000
    with pytest.raises(ToleranceExceededError):
        plan(12_000_000, period_amount=1_100_000, monthly_rate_bps=200, down_payment=2_000_000)


def test_period_amount_too_small_is_rejected():
    with pytest.raises(ValidationError):
        plan(12_000_000, period_amount=1_000, monthly_rate_bps=200)


def test_both_terms_outside_tolerance_raise():
    with pytest.raises(ToleranceExceededError) as exc_info:
        plan(12_000_000, periods=12, period_amount=900_000, monthly_rate_bps=200, down_payment=2_000_000)

    err = exc_info.value
    assert err.total == 10_800_000
    assert err.remaining == 12_400_000
    assert err.tolerance == 200_000
    assert err.details["installments_total"] == 10_800_000


def test_override_accepts_out_of_tolerance_schedule():
    result = plan(
        12_000_000, periods=12, period_amount=900_000,
        monthly_rate_bps=200, down_payment=2_000_000, override=True,
    )

    assert result.within_tolerance is False
    assert result.installments_total == 10_800_000


def test_both_terms_within_tolerance_are_kept():
    result = plan(12_000_000, periods=12, period_amount=1_030_000, monthly_rate_bps=200, down_payment=2_000_000)

    assert result.period_amount == 1_030_000
    assert result.within_tolerance is True


def test_tolerance_grows_with_large_debt():
    result = plan(100_000_000, periods=10)

    # 1% of 100,000,000 beats the floor
    assert result.tolerance == 1_000_000


@pytest.mark.parametrize("kwargs", [
    {"periods": 0},
    {"periods": -3},
    {"periods": 12, "down_payment": -1},
    {"periods": 12, "down_payment": 13_000_000},
    {"periods": 12, "monthly_rate_bps": -100},
    {},
])
def test_invalid_terms(kwargs):
    with pytest.raises(ValidationError):
        plan(12_000_000, **kwargs)


def test_non_positive_price_rejected():
    with pytest.raises(ValidationError):
        plan(0, periods=12)


def test_schedule_runs_monthly_and_clamps_to_month_end():
    result = plan(3_000_000, periods=3)

    schedule = build_schedule(result, date(2024, 1, 31))

    assert [number for number, _, _ in schedule] == [1, 2, 3]
    assert [due for _, due, _ in schedule] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
    assert all(amount == 1_000_000 for _, _, amount in schedule)
