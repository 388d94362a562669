import pytest
from datetime import date
from decimal import Decimal

from billing.database.models import BillStatus, BillType
from billing.services import notification_service
from billing.services.reminder_service import find_due_soon_bills, run_reminder_scan

TODAY = date(2026, 1, 20)


class FakeNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def notify_tenant(self, tenant, title, body, data=None):
        if data["bill_number"] in self.fail_for:
            raise RuntimeError("chat not found")
        self.sent.append((tenant.id, title, body, data))


async def _setup(seed):
    building = await seed.building()
    room = await seed.room(building)
    tenant = await seed.tenant(tg_id=555)
    contract = await seed.contract(room, tenant)

    async def bill(number, start, end, due, **kw):
        return await seed.bill(contract, start, end, due_date=due, bill_number=number, **kw)

    await bill("B-RNT-202601-0000AAAA", date(2026, 1, 1), date(2026, 1, 31), TODAY)
    await bill("B-RNT-202602-0000BBBB", date(2026, 2, 1), date(2026, 2, 28), date(2026, 1, 21))
    await bill("B-UTL-202601-0000CCCC", date(2025, 12, 26), date(2026, 1, 25), date(2026, 1, 22),
               bill_type=BillType.utilities, total=1100000)
    await bill("B-RNT-202603-0000DDDD", date(2026, 3, 1), date(2026, 3, 31), date(2026, 1, 23))
    await bill("B-RNT-202604-0000EEEE", date(2026, 4, 1), date(2026, 4, 30), date(2026, 1, 21),
               status=BillStatus.overdue)
    await bill("B-RNT-202605-0000FFFF", date(2026, 5, 1), date(2026, 5, 31), date(2026, 1, 21),
               status=BillStatus.cancelled)
    return tenant


@pytest.mark.asyncio
async def test_selects_issued_bills_due_in_window(async_session, seed):
    await _setup(seed)

    bills = await find_due_soon_bills(async_session, TODAY)

    assert [b.bill_number for b in bills] == ["B-RNT-202602-0000BBBB", "B-UTL-202601-0000CCCC"]


@pytest.mark.asyncio
async def test_reminder_payload(async_session, seed):
    tenant = await _setup(seed)
    notifier = FakeNotifier()

    report = await run_reminder_scan(async_session, notifier=notifier, today=TODAY)

    assert (report.selected, report.sent, report.failed) == (2, 2, 0)
    tenant_id, title, body, data = notifier.sent[1]
    assert tenant_id == tenant.id
    assert title == "Payment reminder"
    assert "1,100,000" in body and "22.01.2026" in body
    assert data["bill_number"] == "B-UTL-202601-0000CCCC"
    assert data["days_remaining"] == 2
    assert Decimal(data["amount"]) == Decimal(1100000)
    assert notifier.sent[0][3]["days_remaining"] == 1


@pytest.mark.asyncio
async def test_notifier_failures_are_counted_not_raised(async_session, seed):
    await _setup(seed)
    notifier = FakeNotifier(fail_for={"B-RNT-202602-0000BBBB"})

    report = await run_reminder_scan(async_session, notifier=notifier, today=TODAY)

    assert (report.selected, report.sent, report.failed) == (2, 1, 1)


@pytest.mark.asyncio
async def test_scan_does_not_change_bills(async_session, seed):
    await _setup(seed)
    before = [(b.id, b.status, b.due_date) for b in await find_due_soon_bills(async_session, TODAY)]

    await run_reminder_scan(async_session, notifier=FakeNotifier(), today=TODAY)

    after = [(b.id, b.status, b.due_date) for b in await find_due_soon_bills(async_session, TODAY)]
    assert before == after


@pytest.mark.asyncio
async def test_without_notifier_nothing_is_sent(async_session, seed, monkeypatch):
    await _setup(seed)
    monkeypatch.setattr(notification_service, "notification_service", None)

    report = await run_reminder_scan(async_session, today=TODAY)

    assert (report.selected, report.sent, report.failed) == (2, 0, 0)
