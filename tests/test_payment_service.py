import pytest
from datetime import date
from decimal import Decimal

from billing.database.models import BillStatus, PaymentMethod, PaymentStatus
from billing.exceptions import ConflictError, StateError, ValidationError
from billing.services.bill_service import edit_issued_bill
from billing.services.payment_service import (
    complete_payment, confirm_cash_payment, fail_payment, open_online_payment, record_bill_payment
)


async def _bills(seed):
    building = await seed.building()
    room = await seed.room(building)
    tenant = await seed.tenant()
    contract = await seed.contract(room, tenant)
    rent = await seed.bill(contract, date(2026, 1, 1), date(2026, 1, 31), total=5000000)
    overdue = await seed.bill(contract, date(2025, 12, 1), date(2025, 12, 31), total=5000000,
                              status=BillStatus.overdue, penalty_amount=100000)
    return tenant, rent, overdue


@pytest.mark.asyncio
async def test_online_payment_success(async_session, seed):
    tenant, rent, overdue = await _bills(seed)

    payment = await open_online_payment(async_session, [rent.id, overdue.id], tenant.id)

    # Penalty counts because the December bill is overdue
    assert payment.amount == Decimal(10100000)
    assert payment.status == PaymentStatus.pending.value
    assert payment.method == PaymentMethod.online.value
    assert rent.payment_id == overdue.payment_id == payment.id

    # Bills are frozen while the payment is in flight
    with pytest.raises(ConflictError):
        await edit_issued_bill(async_session, rent.id, {"description": "changed"})
    with pytest.raises(ConflictError):
        await open_online_payment(async_session, [rent.id], tenant.id)

    completed = await complete_payment(async_session, payment.id, transaction_id="TXN-42")

    assert completed.status == PaymentStatus.completed.value
    assert completed.transaction_id == "TXN-42"
    assert rent.status == overdue.status == BillStatus.paid.value
    assert overdue.paid_amount == Decimal(5100000)

    # Callback retried
    again = await complete_payment(async_session, payment.id, transaction_id="TXN-42")
    assert again.status == PaymentStatus.completed.value


@pytest.mark.asyncio
async def test_online_payment_failure_releases_bills(async_session, seed):
    tenant, rent, _ = await _bills(seed)
    payment = await open_online_payment(async_session, [rent.id], tenant.id)

    failed = await fail_payment(async_session, payment.id)

    assert failed.status == PaymentStatus.failed.value
    assert rent.payment_id is None
    assert rent.status == BillStatus.issued.value

    with pytest.raises(StateError):
        await complete_payment(async_session, payment.id)

    # A new attempt is allowed
    retry = await open_online_payment(async_session, [rent.id], tenant.id)
    assert retry.id != payment.id


@pytest.mark.asyncio
async def test_online_payment_validation(async_session, seed):
    tenant, rent, _ = await _bills(seed)
    stranger = await seed.tenant("Someone Else", tg_id=777)
    rent.status = BillStatus.paid.value
    await async_session.commit()

    with pytest.raises(ValidationError):
        await open_online_payment(async_session, [], tenant.id)
    with pytest.raises(ValidationError):
        await open_online_payment(async_session, [rent.id], tenant.id)
    with pytest.raises(ValidationError):
        await open_online_payment(async_session, [rent.id], stranger.id)


@pytest.mark.asyncio
async def test_partial_then_full_payment(async_session, seed):
    _, rent, _ = await _bills(seed)

    bill = await record_bill_payment(async_session, rent.id, 2000000)
    assert bill.status == BillStatus.partially_paid.value
    assert bill.paid_amount == Decimal(2000000)
    assert bill.amount_due == Decimal(3000000)

    bill = await record_bill_payment(async_session, rent.id, "3000000")
    assert bill.status == BillStatus.paid.value
    assert bill.amount_due == Decimal(0)

    with pytest.raises(StateError):
        await record_bill_payment(async_session, rent.id, 1)
    with pytest.raises(ValidationError):
        await record_bill_payment(async_session, rent.id, 0)


@pytest.mark.asyncio
async def test_partial_payments_of_overdue_bill_include_penalty(async_session, seed):
    _, _, overdue = await _bills(seed)

    bill = await record_bill_payment(async_session, overdue.id, 2500000)
    assert bill.status == BillStatus.partially_paid.value
    assert bill.amount_due == Decimal(2600000)

    # Covering only the total leaves the penalty open
    bill = await record_bill_payment(async_session, overdue.id, 2500000)
    assert bill.status == BillStatus.partially_paid.value
    assert bill.amount_due == Decimal(100000)

    bill = await record_bill_payment(async_session, overdue.id, 100000)
    assert bill.status == BillStatus.paid.value
    assert bill.paid_amount == Decimal(5100000)
    assert bill.amount_due == Decimal(0)


@pytest.mark.asyncio
async def test_cash_payment_cancels_pending_online_payment(async_session, seed):
    tenant, rent, overdue = await _bills(seed)
    online = await open_online_payment(async_session, [rent.id, overdue.id], tenant.id)

    cash = await confirm_cash_payment(async_session, rent.id, 5000000, confirmed_by=3)

    assert cash.method == PaymentMethod.cash.value
    assert cash.status == PaymentStatus.completed.value
    assert cash.confirmed_by == 3
    assert online.status == PaymentStatus.failed.value
    assert rent.status == BillStatus.paid.value
    assert rent.payment_id == cash.id
    # The other bill of the cart is free again
    assert overdue.payment_id is None
    assert overdue.status == BillStatus.overdue.value
