"""
Fair-billing calculator.

Pure functions, no database access: they take already-loaded rows and
return amounts and line items for the bill service to persist.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, NamedTuple, Optional, Tuple

from billing.config import config
from billing.database.models import Building, UtilityReading
from billing.exceptions import DataIntegrityError, ValidationError
from billing.utils.dates import previous_month


class ChargeLine(NamedTuple):
    service_type: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    description: str


@dataclass
class UtilityQuote:
    period_start: date
    period_end: date
    billable_days: int
    electric_used: int
    water_used: int
    service_fee: Decimal
    lines: List[ChargeLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal(0))

    @property
    def fee_waived(self) -> bool:
        return self.service_fee == 0


def utility_period(
    closing_day: int,
    month: int,
    year: int,
    contract_start: Optional[date] = None,
    contract_end: Optional[date] = None,
) -> Tuple[date, date]:
    """
    Billing period of a utility month.

    The period ends on the closing day of the billing month and starts the
    day after the previous month's closing day. It is clipped to the
    tenancy when the contract began or ends inside it.
    """
    if not 1 <= closing_day <= 28:
        raise ValidationError(f"Closing day {closing_day} is outside 1-28")

    end = date(year, month, closing_day)
    prev_m, prev_y = previous_month(month, year)
    start = date(prev_y, prev_m, closing_day) + timedelta(days=1)

    if contract_start and contract_start > start:
        start = contract_start
    if contract_end and contract_end < end:
        end = contract_end
    if end < start:
        raise ValidationError(f"Tenancy does not overlap the period ending {end.isoformat()}")
    return start, end


def billable_days(start: date, end: date) -> int:
    """Inclusive day count."""
    return (end - start).days + 1


def compute_utility_charges(
    reading: UtilityReading,
    building: Building,
    period_start: date,
    period_end: date,
) -> Optional[UtilityQuote]:
    """
    Cost of one utility reading over the given period.

    Returns None when there is nothing to bill: no usage on either meter and
    the shared service fee waived for a short stay.
    """
    electric_used = reading.curr_electric - reading.prev_electric
    water_used = reading.curr_water - reading.prev_water

    # Never bill negative usage
    if electric_used < 0 or water_used < 0:
        raise DataIntegrityError(
            f"Negative usage for room {reading.room_id} "
            f"{reading.billing_month:02d}/{reading.billing_year}: "
            f"electric {reading.prev_electric}->{reading.curr_electric}, "
            f"water {reading.prev_water}->{reading.curr_water}"
        )

    days = billable_days(period_start, period_end)
    fee = Decimal(building.service_fee or 0)
    if days < config.SERVICE_FEE_MIN_DAYS:
        fee = Decimal(0)

    if electric_used == 0 and water_used == 0 and fee == 0:
        return None

    electric_price = Decimal(reading.electric_price or 0)
    water_price = Decimal(reading.water_price or 0)

    lines = [
        ChargeLine(
            "Electricity", Decimal(electric_used), electric_price,
            electric_price * electric_used,
            f"{reading.prev_electric} - {reading.curr_electric}",
        ),
        ChargeLine(
            "Water", Decimal(water_used), water_price,
            water_price * water_used,
            f"{reading.prev_water} - {reading.curr_water}",
        ),
    ]
    if fee > 0:
        lines.append(ChargeLine("Shared services", Decimal(1), fee, fee, "Cleaning, elevator, waste"))

    return UtilityQuote(
        period_start=period_start,
        period_end=period_end,
        billable_days=days,
        electric_used=electric_used,
        water_used=water_used,
        service_fee=fee,
        lines=lines,
    )


def compute_rent_amount(rent_amount: Decimal, cycle_months: int) -> Decimal:
    return Decimal(rent_amount) * (cycle_months or 1)


def check_rent_cap(amount: Decimal, rent_amount: Decimal, cycle_months: int) -> None:
    """A rent bill may never charge more than the contract allows for its cycle."""
    cap = compute_rent_amount(rent_amount, cycle_months)
    if Decimal(amount) > cap:
        raise ValidationError(
            f"Rent bill amount ({amount}) cannot exceed contract rent for "
            f"{cycle_months or 1} month(s) ({cap})"
        )
