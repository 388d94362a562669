import pytest
from datetime import date
from sqlalchemy import select

from billing import cron
from billing.database.core import build_sessionmaker
from billing.database.models import Bill, BillStatus, BillType, Tenant
from billing.services.notification_service import NotificationService, setup_notifications
from billing.services import notification_service


class FakeBot:
    def __init__(self):
        self.messages = []

    async def send_message(self, chat_id, text, parse_mode=None):
        self.messages.append((chat_id, text, parse_mode))


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def notify_tenant(self, tenant, title, body, data=None):
        self.sent.append(data["bill_number"])


@pytest.mark.asyncio
async def test_notify_tenant_sends_html():
    bot = FakeBot()
    service = NotificationService(bot)
    tenant = Tenant(id=1, full_name="Tran Thi B", tg_id=4242)

    await service.notify_tenant(tenant, "Payment reminder", "Bill <B-1> is due", {"bill_number": "B-1"})

    [(chat_id, text, parse_mode)] = bot.messages
    assert chat_id == 4242
    assert parse_mode == "HTML"
    assert text == "<b>Payment reminder</b>\nBill &lt;B-1&gt; is due"


@pytest.mark.asyncio
async def test_tenant_without_chat_is_skipped():
    bot = FakeBot()
    await NotificationService(bot).notify_tenant(Tenant(id=2, full_name="No Chat"), "Title", "Body")
    assert bot.messages == []


def test_setup_notifications(monkeypatch):
    monkeypatch.setattr(notification_service, "notification_service", None)
    bot = FakeBot()
    setup_notifications(bot)
    assert notification_service.notification_service.bot is bot


@pytest.mark.asyncio
async def test_daily_job_runs_every_step(async_session, seed, monkeypatch):
    monkeypatch.setattr(cron, "AsyncSessionLocal", build_sessionmaker(async_session.bind))

    building = await seed.building(closing_day=25)
    room = await seed.room(building)
    tenant = await seed.tenant(tg_id=99)
    contract = await seed.contract(room, tenant, start=date(2025, 12, 25))
    await seed.reading(room, 1, 2026, electric=(1000, 1200), water=(50, 60))
    # Past due, and one falling due tomorrow
    await seed.bill(contract, date(2025, 11, 25), date(2025, 12, 24), due_date=date(2026, 1, 5),
                    bill_number="B-RNT-202511-0000AAAA")
    await seed.bill(contract, date(2026, 1, 1), date(2026, 1, 20), due_date=date(2026, 1, 26),
                    bill_type=BillType.other, total=200000, bill_number="B-OTH-202601-0000BBBB")
    notifier = FakeNotifier()

    await cron.daily_billing_job(date(2026, 1, 25), notifier=notifier)

    stmt = select(Bill).order_by(Bill.id).execution_options(populate_existing=True)
    bills = list((await async_session.execute(stmt)).scalars().all())
    by_type = {}
    for bill in bills:
        by_type.setdefault(bill.bill_type, []).append(bill)

    assert bills[0].status == BillStatus.overdue.value
    # Rent catches up 12-25 and 01-25, utilities for January
    assert len(by_type[BillType.monthly_rent.value]) == 3
    assert len(by_type[BillType.utilities.value]) == 1
    assert notifier.sent == ["B-OTH-202601-0000BBBB"]
