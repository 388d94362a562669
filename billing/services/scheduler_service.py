"""
Auto-billing scheduler.

Decides, for one calendar day, which rent and utility bills are due and
creates them. Every contract/room is processed on its own: a failure is
rolled back, logged and counted, and the pass moves on.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing.database.models import (
    Bill, BillType, Building, Contract, ContractStatus, Room, UtilityReading, BILLED_STATUSES
)
from billing.exceptions import BillingError, ConflictError, DataIntegrityError
from billing.services.bill_service import create_rent_bill, create_utility_bill
from billing.utils.dates import resolve_today

# Safety bound on periods created for one contract in a single run
MAX_CATCH_UP_PERIODS = 24


@dataclass
class PassReport:
    created: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class AutoBillingReport:
    rent: PassReport
    utility: PassReport

    @property
    def rent_created(self) -> int:
        return self.rent.created

    @property
    def rent_skipped(self) -> int:
        return self.rent.skipped

    @property
    def rent_failed(self) -> int:
        return self.rent.failed

    @property
    def utility_created(self) -> int:
        return self.utility.created

    @property
    def utility_skipped(self) -> int:
        return self.utility.skipped

    @property
    def utility_failed(self) -> int:
        return self.utility.failed


async def next_rent_period_start(session: AsyncSession, contract: Contract) -> date:
    """Day after the last billed rent period, or the contract start."""
    stmt = select(func.max(Bill.billing_period_end)).where(
        Bill.contract_id == contract.id,
        Bill.bill_type == BillType.monthly_rent.value,
        Bill.status.in_(BILLED_STATUSES),
    )
    last_end = (await session.execute(stmt)).scalar()
    if last_end is None:
        return contract.start_date
    return last_end + timedelta(days=1)


async def _bill_contract_rent(session: AsyncSession, contract_id: int, today: date, report: PassReport) -> None:
    contract = await session.get(Contract, contract_id)
    created_any = False

    for _ in range(MAX_CATCH_UP_PERIODS):
        start = await next_rent_period_start(session, contract)
        if start > today:
            break
        if start > contract.end_date:
            logging.info(f"[AutoBill] Contract {contract.id}: next period {start} starts after contract end, not billed")
            break
        bill = await create_rent_bill(session, contract, start, today=today)
        logging.info(
            f"[AutoBill] Rent bill {bill.bill_number} for contract {contract.id} "
            f"({start}..{bill.billing_period_end})"
        )
        report.created += 1
        created_any = True

    if not created_any:
        report.skipped += 1


async def run_rent_pass(session: AsyncSession, today: Optional[date] = None) -> PassReport:
    """Bill every active contract whose next rent period has started."""
    today = resolve_today(today)
    report = PassReport()

    stmt = select(Contract.id).where(
        Contract.status == ContractStatus.active.value,
        Contract.deleted_at.is_(None),
    ).order_by(Contract.id)
    contract_ids = list((await session.execute(stmt)).scalars().all())

    for contract_id in contract_ids:
        try:
            await _bill_contract_rent(session, contract_id, today, report)
        except ConflictError as e:
            await session.rollback()
            logging.info(f"[AutoBill] Contract {contract_id} already billed: {e.message}")
            report.skipped += 1
        except BillingError as e:
            await session.rollback()
            logging.error(f"[AutoBill] Rent billing failed for contract {contract_id}: {e.message}")
            report.failed += 1
        except Exception as e:
            await session.rollback()
            logging.exception(f"[AutoBill] Unexpected error for contract {contract_id}: {e}")
            report.failed += 1

    logging.info(f"[AutoBill] Rent pass {today}: created={report.created} skipped={report.skipped} failed={report.failed}")
    return report


async def _bill_room_utilities(
    session: AsyncSession,
    room_id: int,
    building: Building,
    today: date,
    report: PassReport,
) -> None:
    room = await session.get(Room, room_id)
    contract = await session.get(Contract, room.current_contract_id)
    if not contract or contract.status != ContractStatus.active.value:
        report.skipped += 1
        return

    stmt = select(UtilityReading).where(
        UtilityReading.room_id == room.id,
        UtilityReading.billing_month == today.month,
        UtilityReading.billing_year == today.year,
    )
    reading = (await session.execute(stmt)).scalar_one_or_none()
    if not reading or reading.bill_id is not None:
        report.skipped += 1
        return

    bill = await create_utility_bill(session, contract, building, reading, today=today)
    if bill is None:
        report.skipped += 1
        return
    logging.info(f"[AutoBill] Utilities bill {bill.bill_number} for room {room.room_number}: {bill.total_amount}")
    report.created += 1


async def run_utility_pass(session: AsyncSession, today: Optional[date] = None) -> PassReport:
    """Bill this month's readings of every building that closes today."""
    today = resolve_today(today)
    report = PassReport()

    # Closing days past 28 do not exist in every month and are never matched
    stmt = select(Building.id).where(
        Building.is_active == True,
        Building.closing_day == today.day,
        Building.closing_day <= 28,
    ).order_by(Building.id)
    building_ids = list((await session.execute(stmt)).scalars().all())

    for building_id in building_ids:
        rooms_stmt = select(Room.id).where(
            Room.building_id == building_id,
            Room.is_active == True,
            Room.current_contract_id.is_not(None),
        ).order_by(Room.id)
        room_ids = list((await session.execute(rooms_stmt)).scalars().all())

        for room_id in room_ids:
            # Rollbacks expire loaded rows; reload before each room
            building = await session.get(Building, building_id)
            try:
                await _bill_room_utilities(session, room_id, building, today, report)
            except ConflictError as e:
                await session.rollback()
                logging.info(f"[AutoBill] Room {room_id} utilities already billed: {e.message}")
                report.skipped += 1
            except DataIntegrityError as e:
                await session.rollback()
                logging.error(f"[AutoBill] Room {room_id} needs manual correction: {e.message}")
                report.failed += 1
            except Exception as e:
                await session.rollback()
                logging.exception(f"[AutoBill] Unexpected error for room {room_id}: {e}")
                report.failed += 1

    logging.info(
        f"[AutoBill] Utility pass {today}: created={report.created} "
        f"skipped={report.skipped} failed={report.failed}"
    )
    return report


async def run_auto_billing_cycle(session: AsyncSession, today: Optional[date] = None) -> AutoBillingReport:
    """Both passes for one day. Safe to re-run: repeats are skips."""
    today = resolve_today(today)
    logging.info(f"[AutoBill] Running scan for {today}...")
    rent = await run_rent_pass(session, today)
    utility = await run_utility_pass(session, today)
    return AutoBillingReport(rent=rent, utility=utility)
