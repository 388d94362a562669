import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from billing.config import config
from billing.database.core import AsyncSessionLocal
from billing.services.bill_service import run_overdue_scan
from billing.services.reminder_service import run_reminder_scan
from billing.services.scheduler_service import run_auto_billing_cycle
from billing.utils.dates import resolve_today


async def daily_billing_job(today: Optional[date] = None, notifier=None):
    """
    One day of billing work, in order:
    overdue scan, rent and utility auto-billing, due-soon reminders.
    Each step runs even if an earlier one failed.
    """
    today = resolve_today(today)
    logging.info(f"Running daily billing job for {today}...")

    async with AsyncSessionLocal() as session:
        try:
            await run_overdue_scan(session, today)
        except Exception as e:
            logging.error(f"Overdue scan failed: {e}")
            await session.rollback()

        try:
            report = await run_auto_billing_cycle(session, today)
            logging.info(
                f"Auto-billing: rent {report.rent_created} created, "
                f"utilities {report.utility_created} created"
            )
        except Exception as e:
            logging.error(f"Auto-billing cycle failed: {e}")
            await session.rollback()

        try:
            await run_reminder_scan(session, notifier=notifier, today=today)
        except Exception as e:
            logging.error(f"Reminder scan failed: {e}")

    logging.info("Daily billing job finished.")


async def scheduler_loop():
    """Run the job once a day at SCHEDULER_HOUR local time."""
    logging.info("Scheduler started.")

    # Initial delay to settle startup
    await asyncio.sleep(10)

    tz = ZoneInfo(config.TIMEZONE)
    while True:
        try:
            now = datetime.now(tz)
            today_target = now.replace(hour=config.SCHEDULER_HOUR, minute=0, second=0, microsecond=0)

            if now < today_target:
                next_run = today_target
            else:
                next_run = today_target + timedelta(days=1)

            wait_seconds = (next_run - now).total_seconds()
            logging.info(f"Next scheduler job at {next_run} (in {wait_seconds/3600:.1f}h)")

            await asyncio.sleep(wait_seconds)

            await daily_billing_job(next_run.date())

            # Buffer to skip current minute
            await asyncio.sleep(60)

        except Exception as e:
            logging.error(f"Error in scheduler loop: {e}")
            await asyncio.sleep(60)  # Prevent tight loop on error


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    asyncio.run(daily_billing_job())
