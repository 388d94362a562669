import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing.config import config
from billing.database.models import (
    Bill, BillPayment, BillStatus, Building, Contract, PaymentStatus,
    Room, ServiceCharge, UtilityReading
)
from billing.exceptions import (
    ConflictError, DataIntegrityError, NotFoundError, StateError, ValidationError
)
from billing.schemas.validation import (
    DraftBillIn, DraftBillUpdate, IssuedBillIn, IssuedBillUpdate, ServiceChargeIn, parse_input
)
from billing.services.bill_kinds import BillKind, RentBill, UtilityBill, kind_for
from billing.services.fair_billing import (
    UtilityQuote, check_rent_cap, compute_rent_amount, compute_utility_charges, utility_period
)
from billing.services.overlap_service import assert_no_overlap
from billing.utils.dates import period_end_for, resolve_today
from billing.utils.ui import format_date, format_period

CORE_FIELDS = (
    "contract_id", "tenant_id", "total_amount", "description",
    "billing_period_start", "billing_period_end", "due_date",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Loading ---

async def get_bill(session: AsyncSession, bill_id: int, for_update: bool = False) -> Bill:
    stmt = (
        select(Bill)
        .where(Bill.id == bill_id)
        .options(selectinload(Bill.service_charges))
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    bill = result.scalar_one_or_none()
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found")
    return bill


async def _get_contract(session: AsyncSession, contract_id: int) -> Contract:
    contract = await session.get(Contract, contract_id)
    if not contract or contract.deleted_at is not None:
        raise NotFoundError(f"Contract {contract_id} not found")
    return contract


async def _ensure_no_pending_payment(session: AsyncSession, bill: Bill) -> None:
    """An online payment in flight freezes the bill until it settles."""
    if not bill.payment_id:
        return
    payment = await session.get(BillPayment, bill.payment_id)
    if payment and payment.status == PaymentStatus.pending.value:
        raise ConflictError(
            f"Bill {bill.bill_number or bill.id} has a pending payment ({payment.reference}); "
            f"wait for it to settle before changing the bill",
            bill_number=bill.bill_number,
        )


# --- Line items ---

def _lines_from_input(charges: Optional[List[ServiceChargeIn]]) -> List[ServiceCharge]:
    return [
        ServiceCharge(
            service_type=c.service_type,
            quantity=c.quantity,
            unit_price=c.unit_price if c.unit_price is not None else c.amount,
            amount=c.amount,
            description=c.description,
        )
        for c in charges or []
    ]


def _default_line(kind: BillKind, total: Decimal, description: Optional[str]) -> ServiceCharge:
    return ServiceCharge(
        service_type=kind.default_line,
        quantity=Decimal(1),
        unit_price=total,
        amount=total,
        description=description,
    )


def _lines_from_quote(quote: UtilityQuote) -> List[ServiceCharge]:
    return [
        ServiceCharge(
            service_type=line.service_type,
            quantity=line.quantity,
            unit_price=line.unit_price,
            amount=line.amount,
            description=line.description,
        )
        for line in quote.lines
    ]


def _check_lines_total(lines: List[ServiceCharge], total: Decimal) -> None:
    lines_sum = sum((Decimal(line.amount) for line in lines), Decimal(0))
    if lines_sum != Decimal(total):
        raise ValidationError(f"Service charges sum to {lines_sum}, bill total is {total}")


# --- Creation (manual) ---

async def create_draft_bill(
    session: AsyncSession,
    data: Union[DraftBillIn, dict],
    created_by: Optional[int] = None,
) -> Bill:
    """Save a draft. No bill number, no overlap check, partial data allowed."""
    payload = parse_input(DraftBillIn, data)

    bill = Bill(
        contract_id=payload.contract_id,
        tenant_id=payload.tenant_id,
        bill_type=payload.bill_type.value,
        billing_period_start=payload.billing_period_start,
        billing_period_end=payload.billing_period_end,
        due_date=payload.due_date,
        total_amount=payload.total_amount,
        description=payload.description,
        reading_id=payload.reading_id,
        status=BillStatus.draft.value,
        created_by=created_by,
        paid_amount=Decimal(0),
        penalty_amount=Decimal(0),
        service_charges=_lines_from_input(payload.service_charges),
    )
    session.add(bill)
    await session.commit()
    logging.info(f"Draft bill {bill.id} saved ({bill.bill_type})")
    return bill


async def update_draft_bill(
    session: AsyncSession,
    bill_id: int,
    data: Union[DraftBillUpdate, dict],
) -> Bill:
    """Change a draft's fields. Service charges, when given, replace the old ones."""
    payload = parse_input(DraftBillUpdate, data)
    bill = await get_bill(session, bill_id, for_update=True)

    if bill.status != BillStatus.draft.value or bill.deleted_at is not None:
        raise StateError("Only draft bills can be updated here.")

    changes = payload.model_dump(exclude_unset=True, exclude={"service_charges"})
    for name, value in changes.items():
        if name == "bill_type":
            if value is None:
                continue
            value = value.value
        setattr(bill, name, value)

    if payload.service_charges is not None:
        bill.service_charges = _lines_from_input(payload.service_charges)

    await session.commit()
    return bill


async def _load_backing_reading(session: AsyncSession, bill: Bill, contract: Contract) -> UtilityReading:
    if bill.reading_id:
        stmt = select(UtilityReading).where(UtilityReading.id == bill.reading_id)
    else:
        # Reading month is the month the period closes in
        stmt = select(UtilityReading).where(
            UtilityReading.room_id == contract.room_id,
            UtilityReading.billing_month == bill.billing_period_end.month,
            UtilityReading.billing_year == bill.billing_period_end.year,
        )
    result = await session.execute(stmt.with_for_update().execution_options(populate_existing=True))
    reading = result.scalar_one_or_none()
    if not reading:
        raise ValidationError(f"No meter reading found to back utilities draft {bill.id}")
    if reading.room_id != contract.room_id:
        raise ValidationError(f"Reading {reading.id} belongs to another room")
    return reading


async def publish_draft_bill(session: AsyncSession, bill_id: int) -> Bill:
    """
    Issue a draft (draft -> issued).

    All core fields must be present. Rent drafts are checked against the
    rent cap; utilities drafts are re-priced from their live meter reading
    so a stale draft amount is never issued. The overlap guard runs before
    the bill number is assigned.

    Raises:
        ValidationError: missing fields, rent over cap, nothing to bill
        ConflictError: period already billed
        DataIntegrityError: backing reading already billed, negative usage
        StateError: not a draft
    """
    bill = await get_bill(session, bill_id, for_update=True)
    try:
        if bill.status != BillStatus.draft.value or bill.deleted_at is not None:
            raise StateError(f"Only draft bills can be published (bill {bill.id} is {bill.status})")

        kind = kind_for(bill.bill_type)
        required = [f for f in CORE_FIELDS if getattr(bill, f) in (None, "")]
        if kind is UtilityBill and "total_amount" in required:
            # Derived from the reading below
            required.remove("total_amount")
        if required:
            raise ValidationError(f"Draft {bill.id} is missing required fields: {', '.join(required)}")
        if bill.billing_period_end < bill.billing_period_start:
            raise ValidationError("billing_period_end must not be before billing_period_start")

        contract = await _get_contract(session, bill.contract_id)

        reading = None
        lines = list(bill.service_charges)
        total = Decimal(bill.total_amount) if bill.total_amount is not None else None

        if kind is RentBill:
            check_rent_cap(total, contract.rent_amount, contract.payment_cycle_months)
        elif kind is UtilityBill:
            reading = await _load_backing_reading(session, bill, contract)
            if reading.bill_id is not None and reading.bill_id != bill.id:
                raise DataIntegrityError(
                    f"Reading for room {reading.room_id} "
                    f"{format_period(reading.billing_month, reading.billing_year)} "
                    f"is already billed (bill {reading.bill_id})"
                )
            building = await session.get(Building, (await session.get(Room, contract.room_id)).building_id)
            quote = compute_utility_charges(reading, building, bill.billing_period_start, bill.billing_period_end)
            if quote is None:
                raise ValidationError(f"Nothing to bill for draft {bill.id}: no usage and service fee waived")
            lines = _lines_from_quote(quote)
            total = quote.total

        await assert_no_overlap(
            session, contract.room_id, bill.billing_period_start, bill.billing_period_end,
            bill_type=bill.bill_type, exclude_bill_id=bill.id,
        )

        if not lines:
            lines = [_default_line(kind, total, bill.description)]
        _check_lines_total(lines, total)

        bill.service_charges = lines
        bill.total_amount = total
        bill.bill_number = kind.bill_number(bill.billing_period_start)
        bill.status = BillStatus.issued.value
        if reading is not None:
            bill.reading_id = reading.id
            reading.bill_id = bill.id
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logging.info(f"Published draft {bill.id} as {bill.bill_number}")
    return bill


async def create_issued_bill(
    session: AsyncSession,
    data: Union[IssuedBillIn, dict],
    created_by: Optional[int] = None,
) -> Bill:
    """
    Create and immediately issue a bill (strict validation).

    Utilities bills are not accepted here: they are always priced from a
    meter reading, through the scheduler or a published draft.
    """
    payload = parse_input(IssuedBillIn, data)
    try:
        kind = kind_for(payload.bill_type)

        if kind is UtilityBill:
            raise ValidationError(
                "Utilities bills are derived from meter readings; save a draft with reading_id and publish it"
            )

        contract = await _get_contract(session, payload.contract_id)
        if kind is RentBill:
            check_rent_cap(payload.total_amount, contract.rent_amount, contract.payment_cycle_months)

        await assert_no_overlap(
            session, contract.room_id, payload.billing_period_start, payload.billing_period_end,
            bill_type=kind.bill_type,
        )

        lines = _lines_from_input(payload.service_charges) or [
            _default_line(kind, payload.total_amount, payload.description)
        ]
        _check_lines_total(lines, payload.total_amount)

        bill = Bill(
            bill_number=kind.bill_number(payload.billing_period_start),
            contract_id=contract.id,
            tenant_id=payload.tenant_id,
            bill_type=kind.bill_type.value,
            billing_period_start=payload.billing_period_start,
            billing_period_end=payload.billing_period_end,
            due_date=payload.due_date,
            total_amount=payload.total_amount,
            paid_amount=Decimal(0),
            penalty_amount=Decimal(0),
            status=BillStatus.issued.value,
            description=payload.description,
            created_by=created_by,
            service_charges=lines,
        )
        session.add(bill)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logging.info(f"Issued bill {bill.bill_number} for contract {contract.id}")
    return bill


# --- Creation (scheduler) ---

async def create_rent_bill(
    session: AsyncSession,
    contract: Contract,
    period_start: date,
    today: Optional[date] = None,
    amount: Optional[Decimal] = None,
    created_by: Optional[int] = None,
) -> Bill:
    """
    Issue a rent bill covering the contract's cycle from ``period_start``.

    The last cycle of a contract is cut at the contract end date and
    charged for the months it has started.
    """
    today = resolve_today(today)
    if period_start > contract.end_date:
        raise ValidationError(f"Rent period {period_start} starts after contract end {contract.end_date}")

    cycle = contract.payment_cycle_months or 1
    months = cycle
    period_end = period_end_for(period_start, cycle)
    if period_end > contract.end_date:
        period_end = contract.end_date
        months = 1
        while period_end_for(period_start, months) < period_end:
            months += 1

    if amount is None:
        amount = compute_rent_amount(contract.rent_amount, months)
    check_rent_cap(amount, contract.rent_amount, months)

    await assert_no_overlap(session, contract.room_id, period_start, period_end, bill_type=RentBill.bill_type)

    bill = Bill(
        bill_number=RentBill.bill_number(period_start),
        contract_id=contract.id,
        tenant_id=contract.tenant_id,
        bill_type=RentBill.bill_type.value,
        billing_period_start=period_start,
        billing_period_end=period_end,
        due_date=today + timedelta(days=config.PAYMENT_DUE_DAYS),
        total_amount=amount,
        paid_amount=Decimal(0),
        penalty_amount=Decimal(0),
        status=BillStatus.issued.value,
        description=f"Room rent for {months} month(s) from {format_date(period_start)}",
        created_by=created_by,
        service_charges=[
            ServiceCharge(
                service_type=RentBill.default_line,
                quantity=Decimal(1),
                unit_price=amount,
                amount=amount,
                description=f"{months} of {cycle} month(s)",
            )
        ],
    )
    session.add(bill)
    await session.commit()
    return bill


async def create_utility_bill(
    session: AsyncSession,
    contract: Contract,
    building: Building,
    reading: UtilityReading,
    today: Optional[date] = None,
    created_by: Optional[int] = None,
) -> Optional[Bill]:
    """
    Price one reading and issue its utilities bill, linking the reading.

    Returns None when the fair-billing rules leave nothing to charge.
    Bill, line items and the reading link commit together.
    """
    today = resolve_today(today)

    # Re-read under lock: another run may have consumed it
    stmt = (
        select(UtilityReading)
        .where(UtilityReading.id == reading.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    reading = (await session.execute(stmt)).scalar_one()
    if reading.bill_id is not None:
        raise DataIntegrityError(
            f"Reading for room {reading.room_id} "
            f"{format_period(reading.billing_month, reading.billing_year)} "
            f"is already billed (bill {reading.bill_id})"
        )

    period_start, period_end = utility_period(
        building.closing_day, reading.billing_month, reading.billing_year,
        contract_start=contract.start_date, contract_end=contract.end_date,
    )
    quote = compute_utility_charges(reading, building, period_start, period_end)
    if quote is None:
        logging.info(
            f"Room {reading.room_id} {format_period(reading.billing_month, reading.billing_year)}: "
            f"no usage and service fee waived, no bill"
        )
        return None

    await assert_no_overlap(session, contract.room_id, period_start, period_end, bill_type=UtilityBill.bill_type)

    bill = Bill(
        bill_number=UtilityBill.bill_number(period_end),
        contract_id=contract.id,
        tenant_id=contract.tenant_id,
        bill_type=UtilityBill.bill_type.value,
        billing_period_start=period_start,
        billing_period_end=period_end,
        due_date=today + timedelta(days=config.PAYMENT_DUE_DAYS),
        total_amount=quote.total,
        paid_amount=Decimal(0),
        penalty_amount=Decimal(0),
        status=BillStatus.issued.value,
        description=f"Electricity and water {format_period(reading.billing_month, reading.billing_year)}",
        reading_id=reading.id,
        created_by=created_by,
        service_charges=_lines_from_quote(quote),
    )
    try:
        session.add(bill)
        await session.flush()
        reading.bill_id = bill.id
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return bill


# --- Issued bill maintenance ---

async def edit_issued_bill(
    session: AsyncSession,
    bill_id: int,
    data: Union[IssuedBillUpdate, dict],
) -> Bill:
    """
    Restricted edit of an issued bill: amount, lines, description, due date
    and penalty. Tenant, contract, type, period and status cannot change.
    """
    payload = parse_input(IssuedBillUpdate, data)
    bill = await get_bill(session, bill_id, for_update=True)

    if bill.deleted_at is not None or bill.status != BillStatus.issued.value:
        raise StateError(f"Cannot edit bill with status: {bill.status}")
    await _ensure_no_pending_payment(session, bill)

    kind = kind_for(bill.bill_type)
    total = payload.total_amount if payload.total_amount is not None else Decimal(bill.total_amount)

    if kind is RentBill and payload.total_amount is not None:
        contract = await _get_contract(session, bill.contract_id)
        check_rent_cap(total, contract.rent_amount, contract.payment_cycle_months)

    if payload.service_charges is not None:
        lines = _lines_from_input(payload.service_charges)
    elif payload.total_amount is not None and total != Decimal(bill.total_amount):
        lines = [_default_line(kind, total, payload.description or bill.description)]
    else:
        lines = None
    _check_lines_total(lines if lines is not None else bill.service_charges, total)

    if lines is not None:
        bill.service_charges = lines
    bill.total_amount = total
    if payload.description is not None:
        bill.description = payload.description
    if payload.due_date is not None:
        bill.due_date = payload.due_date
    if payload.penalty_amount is not None:
        bill.penalty_amount = payload.penalty_amount

    await session.commit()
    return bill


async def extend_overdue_bill(
    session: AsyncSession,
    bill_id: int,
    extra_penalty: Union[Decimal, int, float] = 0,
) -> Bill:
    """
    Reopen an overdue bill: due date moves by the grace period, the optional
    penalty accumulates, status returns to issued.
    """
    extra = Decimal(str(extra_penalty or 0))
    if extra < 0:
        raise ValidationError("Penalty must not be negative")

    bill = await get_bill(session, bill_id, for_update=True)
    if bill.deleted_at is not None or bill.status != BillStatus.overdue.value:
        raise StateError(f"Only overdue bills can be extended (bill is {bill.status})")

    days = config.EXTENSION_DAYS
    bill.due_date = bill.due_date + timedelta(days=days)
    bill.penalty_amount = Decimal(bill.penalty_amount or 0) + extra
    bill.status = BillStatus.issued.value
    bill.description = f"{bill.description or ''} (Extended {days} days)".strip()

    await session.commit()
    logging.info(f"Bill {bill.bill_number} extended to {bill.due_date}, penalty {bill.penalty_amount}")
    return bill


async def cancel_or_delete_bill(session: AsyncSession, bill_id: int) -> Bill:
    """Soft-delete a draft, or cancel an issued/overdue bill."""
    bill = await get_bill(session, bill_id, for_update=True)

    if bill.deleted_at is not None:
        raise StateError("Bill already deleted")

    if bill.status == BillStatus.draft.value:
        bill.deleted_at = _now()
    elif bill.status in (BillStatus.issued.value, BillStatus.overdue.value):
        await _ensure_no_pending_payment(session, bill)
        bill.status = BillStatus.cancelled.value
        bill.deleted_at = _now()
    else:
        raise StateError(f"Cannot delete/cancel bill with status: {bill.status}")

    await session.commit()
    logging.info(f"Bill {bill.bill_number or bill.id} -> {bill.status} (deleted)")
    return bill


async def restore_bill(session: AsyncSession, bill_id: int) -> Bill:
    """Clear the deleted flag. A cancelled bill stays cancelled."""
    bill = await get_bill(session, bill_id, for_update=True)
    if bill.deleted_at is None:
        raise StateError("Bill is not deleted")
    bill.deleted_at = None
    await session.commit()
    return bill


async def run_overdue_scan(session: AsyncSession, today: Optional[date] = None) -> int:
    """Mark every issued bill whose due date has passed as overdue."""
    today = resolve_today(today)
    stmt = (
        select(Bill)
        .where(
            Bill.status == BillStatus.issued.value,
            Bill.due_date < today,
            Bill.deleted_at.is_(None),
        )
        .with_for_update()
    )
    result = await session.execute(stmt)
    bills = result.scalars().all()

    for bill in bills:
        bill.status = BillStatus.overdue.value
    await session.commit()

    count = len(bills)
    logging.info(f"Overdue scan for {today}: {count} bill(s) marked overdue")
    return count


# --- Listing ---

async def get_unbilled_rooms(session: AsyncSession, period_start: date) -> List[Room]:
    """Occupied rooms with no live bill starting on ``period_start``."""
    if not isinstance(period_start, date):
        raise ValidationError("Invalid billing period start date.")

    billed_rooms = (
        select(Contract.room_id)
        .join(Bill, Bill.contract_id == Contract.id)
        .where(
            Bill.billing_period_start == period_start,
            Bill.status != BillStatus.cancelled.value,
            Bill.deleted_at.is_(None),
        )
    )
    stmt = (
        select(Room)
        .where(
            Room.is_active == True,
            Room.current_contract_id.is_not(None),
            Room.id.not_in(billed_rooms),
        )
        .order_by(Room.building_id, Room.room_number)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_unpaid_bills_for_tenant(session: AsyncSession, tenant_id: int) -> List[Bill]:
    stmt = (
        select(Bill)
        .where(
            Bill.tenant_id == tenant_id,
            Bill.status.in_([BillStatus.issued.value, BillStatus.overdue.value]),
            Bill.deleted_at.is_(None),
        )
        .order_by(Bill.due_date)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_draft_bills(session: AsyncSession) -> List[Bill]:
    stmt = (
        select(Bill)
        .where(Bill.status == BillStatus.draft.value, Bill.deleted_at.is_(None))
        .order_by(Bill.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_deleted_bills(session: AsyncSession) -> List[Bill]:
    stmt = select(Bill).where(Bill.deleted_at.is_not(None)).order_by(Bill.deleted_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
