import pytest
from datetime import date
from decimal import Decimal

from billing.database.models import Building, UtilityReading
from billing.exceptions import DataIntegrityError, ValidationError
from billing.services.fair_billing import (
    billable_days, check_rent_cap, compute_rent_amount, compute_utility_charges, utility_period
)
from billing.utils.dates import add_months, period_end_for


def make_building(service_fee=150000):
    return Building(
        name="Sunrise",
        closing_day=25,
        electric_unit_price=Decimal(3500),
        water_unit_price=Decimal(25000),
        service_fee=Decimal(service_fee),
    )


def make_reading(electric=(1000, 1200), water=(50, 60)):
    return UtilityReading(
        room_id=1,
        billing_month=1,
        billing_year=2026,
        prev_electric=electric[0],
        curr_electric=electric[1],
        prev_water=water[0],
        curr_water=water[1],
        electric_price=Decimal(3500),
        water_price=Decimal(25000),
    )


def test_utility_period_full_month():
    start, end = utility_period(25, 1, 2026)
    assert start == date(2025, 12, 26)
    assert end == date(2026, 1, 25)
    assert billable_days(start, end) == 31


def test_utility_period_clipped_to_contract_start():
    start, end = utility_period(25, 1, 2026, contract_start=date(2026, 1, 8))
    assert start == date(2026, 1, 8)
    assert billable_days(start, end) == 18


def test_utility_period_clipped_to_contract_end():
    start, end = utility_period(25, 3, 2026, contract_end=date(2026, 3, 10))
    assert start == date(2026, 2, 26)
    assert end == date(2026, 3, 10)


def test_utility_period_rejects_closing_day_past_28():
    with pytest.raises(ValidationError):
        utility_period(30, 1, 2026)


def test_utility_period_rejects_tenancy_outside_period():
    with pytest.raises(ValidationError):
        utility_period(25, 1, 2026, contract_start=date(2026, 2, 1))


def test_full_month_charges():
    """200 kWh x 3500 + 10 m3 x 25000 + 150000 shared fee"""
    quote = compute_utility_charges(make_reading(), make_building(), date(2025, 12, 26), date(2026, 1, 25))

    assert quote.billable_days == 31
    assert quote.electric_used == 200
    assert quote.water_used == 10
    assert not quote.fee_waived
    assert [line.service_type for line in quote.lines] == ["Electricity", "Water", "Shared services"]
    assert [line.amount for line in quote.lines] == [Decimal(700000), Decimal(250000), Decimal(150000)]
    assert quote.total == Decimal(1100000)


def test_short_stay_waives_service_fee():
    quote = compute_utility_charges(make_reading(), make_building(), date(2026, 1, 8), date(2026, 1, 25))

    assert quote.billable_days == 18
    assert quote.fee_waived
    assert len(quote.lines) == 2
    assert quote.total == Decimal(950000)


def test_fee_charged_from_twenty_days():
    quote = compute_utility_charges(make_reading(), make_building(), date(2026, 1, 6), date(2026, 1, 25))
    assert quote.billable_days == 20
    assert quote.service_fee == Decimal(150000)


def test_zero_usage_short_stay_is_not_billed():
    reading = make_reading(electric=(1200, 1200), water=(60, 60))
    assert compute_utility_charges(reading, make_building(), date(2026, 1, 20), date(2026, 1, 25)) is None


def test_zero_usage_full_month_still_bills_fee():
    reading = make_reading(electric=(1200, 1200), water=(60, 60))
    quote = compute_utility_charges(reading, make_building(), date(2025, 12, 26), date(2026, 1, 25))
    assert quote.total == Decimal(150000)


def test_negative_usage_raises():
    reading = make_reading(electric=(1200, 1100))
    with pytest.raises(DataIntegrityError):
        compute_utility_charges(reading, make_building(), date(2025, 12, 26), date(2026, 1, 25))


def test_rent_amount_and_cap():
    assert compute_rent_amount(Decimal(5000000), 3) == Decimal(15000000)
    check_rent_cap(Decimal(15000000), Decimal(5000000), 3)

    with pytest.raises(ValidationError):
        check_rent_cap(Decimal(15000001), Decimal(5000000), 3)


def test_rent_period_end_clamps_month_length():
    assert period_end_for(date(2026, 1, 1), 1) == date(2026, 1, 31)
    assert period_end_for(date(2026, 1, 31), 1) == date(2026, 2, 27)
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert period_end_for(date(2026, 11, 15), 3) == date(2027, 2, 14)
