"""
Utility meter ledger.

One reading row per room and billing month. A month's "old" index comes
from the previous month's "new" index unless the meter was reset, and a
correction to month M is pushed one step forward into month M+1.
"""
import logging
from datetime import date
from typing import Dict, List, NamedTuple, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.config import config
from billing.database.models import Building, Room, UtilityReading
from billing.exceptions import DataIntegrityError, NotFoundError, ValidationError
from billing.schemas.validation import ReadingEntry, RecordReadingsRequest, parse_input
from billing.utils.dates import month_index, next_month, previous_month, resolve_today


class PreviousIndex(NamedTuple):
    prev_electric: int
    prev_water: int


class ReadingFormRow(NamedTuple):
    """One line of the data-entry form"""
    room_id: int
    room_number: str
    old_electric: int
    old_water: int
    new_electric: Optional[int]  # Already entered this month
    new_water: Optional[int]
    is_billed: bool


async def _get_reading(
    session: AsyncSession,
    room_id: int,
    month: int,
    year: int,
    for_update: bool = False,
) -> Optional[UtilityReading]:
    stmt = select(UtilityReading).where(
        UtilityReading.room_id == room_id,
        UtilityReading.billing_month == month,
        UtilityReading.billing_year == year,
    )
    if for_update:
        # Serialises concurrent writers of the same room/month
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def resolve_previous_index(
    session: AsyncSession,
    room_id: int,
    billing_month: int,
    billing_year: int,
) -> PreviousIndex:
    """Previous calendar month's closing indices for the room, 0 when none."""
    prev_m, prev_y = previous_month(billing_month, billing_year)
    prev = await _get_reading(session, room_id, prev_m, prev_y)
    if not prev:
        return PreviousIndex(0, 0)
    return PreviousIndex(prev.curr_electric, prev.curr_water)


async def get_readings_form(
    session: AsyncSession,
    building_id: int,
    month: int,
    year: int,
) -> List[ReadingFormRow]:
    """
    Rows for the "enter meter readings" screen of one building.

    An existing current-month row keeps its own baseline, so reopening a
    half-filled form does not move the "old" numbers under the operator.
    """
    rooms_stmt = (
        select(Room)
        .where(Room.building_id == building_id, Room.is_active == True)
        .order_by(Room.room_number)
    )
    rooms = list((await session.execute(rooms_stmt)).scalars().all())
    if not rooms:
        return []

    room_ids = [r.id for r in rooms]
    prev_m, prev_y = previous_month(month, year)

    async def _load(m: int, y: int) -> Dict[int, UtilityReading]:
        stmt = select(UtilityReading).where(
            UtilityReading.room_id.in_(room_ids),
            UtilityReading.billing_month == m,
            UtilityReading.billing_year == y,
        )
        return {r.room_id: r for r in (await session.execute(stmt)).scalars().all()}

    current = await _load(month, year)
    previous = await _load(prev_m, prev_y)

    rows = []
    for room in rooms:
        cur = current.get(room.id)
        prev = previous.get(room.id)
        if cur:
            old_electric, old_water = cur.prev_electric, cur.prev_water
        elif prev:
            old_electric, old_water = prev.curr_electric, prev.curr_water
        else:
            old_electric, old_water = 0, 0

        rows.append(ReadingFormRow(
            room_id=room.id,
            room_number=room.room_number,
            old_electric=old_electric,
            old_water=old_water,
            new_electric=cur.curr_electric if cur else None,
            new_water=cur.curr_water if cur else None,
            is_billed=bool(cur and cur.bill_id),
        ))
    return rows


def _check_period_window(month: int, year: int, today: date) -> None:
    requested = month_index(month, year)
    current = month_index(today.month, today.year)
    if requested > current:
        raise ValidationError(f"Cannot record readings for a future period ({month:02d}/{year})")
    if current - requested > config.READING_RETENTION_MONTHS:
        raise ValidationError(
            f"Period {month:02d}/{year} is older than {config.READING_RETENTION_MONTHS} months "
            f"and can no longer be edited"
        )


def _resolve_old(entry: ReadingEntry, previous: Optional[UtilityReading]) -> PreviousIndex:
    if entry.is_electric_reset:
        old_electric = entry.old_electric_override or 0
    else:
        old_electric = previous.curr_electric if previous else 0

    if entry.is_water_reset:
        old_water = entry.old_water_override or 0
    else:
        old_water = previous.curr_water if previous else 0

    return PreviousIndex(old_electric, old_water)


async def record_readings(
    session: AsyncSession,
    data: Union[RecordReadingsRequest, dict],
    recorded_by: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, int]:
    """
    Bulk upsert of one building's readings for a month.

    All-or-nothing: any invalid entry rejects the batch before a single
    row is written. After the upsert, each room's next month (if already
    recorded and not reset) gets its baseline replaced by this month's new
    index.

    Raises:
        ValidationError: bad period, room outside building, new < old
        DataIntegrityError: the month's reading is already billed
        NotFoundError: unknown building
    """
    request = parse_input(RecordReadingsRequest, data)
    month, year = request.billing_month, request.billing_year
    today = resolve_today(today)

    _check_period_window(month, year, today)

    building = await session.get(Building, request.building_id)
    if not building:
        raise NotFoundError(f"Building {request.building_id} not found")

    room_ids = [e.room_id for e in request.readings]
    rooms_stmt = select(Room.id).where(Room.id.in_(room_ids), Room.building_id == building.id)
    known_rooms = set((await session.execute(rooms_stmt)).scalars().all())
    missing = [rid for rid in room_ids if rid not in known_rooms]
    if missing:
        raise ValidationError(f"Rooms {missing} do not belong to building {building.id}")

    electric_price = building.electric_unit_price or 0
    water_price = building.water_unit_price or 0
    prev_m, prev_y = previous_month(month, year)
    next_m, next_y = next_month(month, year)

    try:
        # 1. Resolve and validate every entry before writing anything
        resolved = []
        for entry in request.readings:
            previous = await _get_reading(session, entry.room_id, prev_m, prev_y)
            old = _resolve_old(entry, previous)

            if entry.new_electric < old.prev_electric:
                raise ValidationError(
                    f"Room {entry.room_id}: new electric index ({entry.new_electric}) "
                    f"cannot be less than old ({old.prev_electric})"
                )
            if entry.new_water < old.prev_water:
                raise ValidationError(
                    f"Room {entry.room_id}: new water index ({entry.new_water}) "
                    f"cannot be less than old ({old.prev_water})"
                )

            existing = await _get_reading(session, entry.room_id, month, year, for_update=True)
            if existing and existing.bill_id:
                raise DataIntegrityError(
                    f"Reading for room {entry.room_id} {month:02d}/{year} is already billed "
                    f"(bill {existing.bill_id}) and cannot be changed"
                )
            resolved.append((entry, old, existing))

        # 2. Upsert
        for entry, old, existing in resolved:
            reading = existing or UtilityReading(
                room_id=entry.room_id,
                billing_month=month,
                billing_year=year,
            )
            reading.prev_electric = old.prev_electric
            reading.curr_electric = entry.new_electric
            reading.prev_water = old.prev_water
            reading.curr_water = entry.new_water
            reading.is_electric_reset = entry.is_electric_reset
            reading.is_water_reset = entry.is_water_reset
            reading.electric_price = electric_price
            reading.water_price = water_price
            reading.recorded_date = today
            reading.created_by = recorded_by
            if not existing:
                session.add(reading)

            # 3. Cascade one month forward
            following = await _get_reading(session, entry.room_id, next_m, next_y, for_update=True)
            if following and not following.bill_id:
                if not following.is_electric_reset:
                    following.prev_electric = entry.new_electric
                if not following.is_water_reset:
                    following.prev_water = entry.new_water
            elif following and following.bill_id:
                logging.warning(
                    f"Reading for room {entry.room_id} {next_m:02d}/{next_y} is already billed; "
                    f"baseline not updated"
                )

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logging.info(f"Recorded {len(resolved)} readings for building {building.id} {month:02d}/{year}")
    return {"processed": len(resolved)}
