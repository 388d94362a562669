from datetime import date
from typing import Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.database.models import Bill, BillType, Contract, BILLED_STATUSES
from billing.exceptions import ConflictError
from billing.services.bill_kinds import kind_for


async def find_overlapping_bill(
    session: AsyncSession,
    room_id: int,
    start: date,
    end: date,
    bill_type: Optional[Union[BillType, str]] = None,
    exclude_bill_id: Optional[int] = None,
) -> Optional[Bill]:
    """
    First billed (issued/overdue/paid/partially paid) bill of the room whose
    period intersects [start, end].

    The scope is every contract ever bound to the room, so a new tenant's
    bill can collide with the previous tenant's. With ``bill_type`` the
    search is limited to that type; without it any type except the exempt
    ones counts.
    """
    if bill_type is not None and kind_for(bill_type).overlap_exempt:
        return None

    contract_ids = select(Contract.id).where(Contract.room_id == room_id)

    stmt = (
        select(Bill)
        .where(
            Bill.contract_id.in_(contract_ids),
            Bill.status.in_(BILLED_STATUSES),
            Bill.billing_period_start <= end,
            Bill.billing_period_end >= start,
        )
        .order_by(Bill.billing_period_start)
        .limit(1)
    )
    if bill_type is not None:
        stmt = stmt.where(Bill.bill_type == kind_for(bill_type).bill_type.value)
    else:
        stmt = stmt.where(Bill.bill_type != BillType.other.value)
    if exclude_bill_id is not None:
        stmt = stmt.where(Bill.id != exclude_bill_id)

    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def assert_no_overlap(
    session: AsyncSession,
    room_id: int,
    start: date,
    end: date,
    bill_type: Optional[Union[BillType, str]] = None,
    exclude_bill_id: Optional[int] = None,
) -> None:
    """Raise ConflictError if [start, end] is already billed for the room."""
    existing = await find_overlapping_bill(session, room_id, start, end, bill_type, exclude_bill_id)
    if existing:
        raise ConflictError(
            f"Billing period {start.isoformat()}..{end.isoformat()} overlaps with existing "
            f"{existing.bill_type} bill: {existing.bill_number}",
            bill_number=existing.bill_number,
        )
