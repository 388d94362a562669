import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.config import config
from billing.database.models import Bill, BillStatus, Tenant
from billing.services import notification_service as notifications
from billing.utils.dates import resolve_today
from billing.utils.ui import format_date, format_money


@dataclass
class ReminderReport:
    selected: int = 0
    sent: int = 0
    failed: int = 0


async def find_due_soon_bills(session: AsyncSession, today: Optional[date] = None) -> List[Bill]:
    """Issued bills falling due between tomorrow and the end of the reminder window."""
    today = resolve_today(today)
    stmt = (
        select(Bill)
        .where(
            Bill.status == BillStatus.issued.value,
            Bill.deleted_at.is_(None),
            Bill.due_date >= today + timedelta(days=1),
            Bill.due_date <= today + timedelta(days=config.REMINDER_WINDOW_DAYS),
        )
        .order_by(Bill.due_date, Bill.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def run_reminder_scan(
    session: AsyncSession,
    notifier=None,
    today: Optional[date] = None,
) -> ReminderReport:
    """
    Send a due-soon reminder for each selected bill.

    Read-only with respect to bills. Delivery errors are logged and counted,
    never raised.
    """
    today = resolve_today(today)
    notifier = notifier or notifications.notification_service
    bills = await find_due_soon_bills(session, today)
    report = ReminderReport(selected=len(bills))

    if notifier is None:
        logging.warning(f"Reminder scan: {len(bills)} bill(s) due soon but notifications are not configured")
        return report

    for bill in bills:
        tenant = await session.get(Tenant, bill.tenant_id) if bill.tenant_id else None
        if not tenant:
            continue
        days_remaining = (bill.due_date - today).days
        title = "Payment reminder"
        body = (
            f"Bill {bill.bill_number} ({format_money(bill.total_amount)}) "
            f"is due on {format_date(bill.due_date)}, in {days_remaining} day(s)."
        )
        data = {
            "bill_id": bill.id,
            "bill_number": bill.bill_number,
            "days_remaining": days_remaining,
            "amount": str(bill.total_amount),
        }
        try:
            await notifier.notify_tenant(tenant, title, body, data)
            report.sent += 1
        except Exception as e:
            logging.warning(f"Reminder for bill {bill.bill_number} not delivered: {e}")
            report.failed += 1

    logging.info(f"Reminder scan {today}: selected={report.selected} sent={report.sent} failed={report.failed}")
    return report
