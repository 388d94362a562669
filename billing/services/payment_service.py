"""
Payment collaborator adapter.

Bills are settled through BillPayment records. An online payment works as
a cart: the tenant's selected bills are linked to one pending payment and
stay frozen until the gateway reports success or failure. Cash payments
are confirmed by staff directly against a single bill.
"""
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing.database.models import Bill, BillPayment, BillStatus, PaymentMethod, PaymentStatus
from billing.exceptions import ConflictError, NotFoundError, StateError, ValidationError

PAYABLE_STATUSES = (BillStatus.issued.value, BillStatus.overdue.value)


def _new_reference() -> str:
    return f"PAY-{datetime.now(timezone.utc):%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


async def _lock_payment(session: AsyncSession, payment_id: int) -> BillPayment:
    stmt = (
        select(BillPayment)
        .where(BillPayment.id == payment_id)
        .options(selectinload(BillPayment.bills))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _apply_amount(bill: Bill, amount: Decimal) -> None:
    """Add ``amount`` to the bill and move it to paid or partially paid."""
    owed = bill.amount_due
    bill.paid_amount = Decimal(bill.paid_amount or 0) + amount
    if amount >= owed:
        bill.status = BillStatus.paid.value
    else:
        bill.status = BillStatus.partially_paid.value


async def open_online_payment(
    session: AsyncSession,
    bill_ids: List[int],
    tenant_id: int,
) -> BillPayment:
    """
    Start an online payment for a set of the tenant's bills.

    The amount is the sum of what each bill still owes; penalties count
    only on overdue bills.

    Raises:
        ValidationError: empty cart, bill not payable or not the tenant's
        ConflictError: a bill is already in another pending payment
    """
    if not bill_ids:
        raise ValidationError("No bills selected for payment")

    stmt = (
        select(Bill)
        .where(Bill.id.in_(bill_ids))
        .order_by(Bill.id)
        .with_for_update()
    )
    bills = list((await session.execute(stmt)).scalars().all())
    missing = set(bill_ids) - {b.id for b in bills}
    if missing:
        raise NotFoundError(f"Bills {sorted(missing)} not found")

    for bill in bills:
        if bill.tenant_id != tenant_id:
            raise ValidationError(f"Bill {bill.bill_number} does not belong to tenant {tenant_id}")
        if bill.deleted_at is not None or bill.status not in PAYABLE_STATUSES:
            raise ValidationError(f"Bill {bill.bill_number} cannot be paid (status: {bill.status})")
        if bill.payment_id:
            linked = await session.get(BillPayment, bill.payment_id)
            if linked and linked.status == PaymentStatus.pending.value:
                raise ConflictError(
                    f"Bill {bill.bill_number} is already being paid ({linked.reference})",
                    bill_number=bill.bill_number,
                )

    amount = sum((bill.amount_due for bill in bills), Decimal(0))
    if amount <= 0:
        raise ValidationError("Nothing left to pay on the selected bills")

    payment = BillPayment(
        amount=amount,
        method=PaymentMethod.online.value,
        status=PaymentStatus.pending.value,
        reference=_new_reference(),
        paid_by=tenant_id,
    )
    session.add(payment)
    await session.flush()
    for bill in bills:
        bill.payment_id = payment.id

    await session.commit()
    logging.info(f"Online payment {payment.reference} opened for {len(bills)} bill(s), amount {amount}")
    return payment


async def complete_payment(
    session: AsyncSession,
    payment_id: int,
    transaction_id: Optional[str] = None,
) -> BillPayment:
    """Gateway reported success: settle every linked bill in full."""
    payment = await _lock_payment(session, payment_id)

    # Gateways retry callbacks
    if payment.status == PaymentStatus.completed.value:
        logging.info(f"Payment {payment.reference} already completed")
        return payment
    if payment.status != PaymentStatus.pending.value:
        raise StateError(f"Cannot complete payment with status: {payment.status}")

    for bill in payment.bills:
        owed = bill.amount_due
        if owed > 0:
            _apply_amount(bill, owed)

    payment.status = PaymentStatus.completed.value
    payment.transaction_id = transaction_id
    payment.payment_date = datetime.now(timezone.utc)

    await session.commit()
    logging.info(f"Payment {payment.reference} completed ({len(payment.bills)} bill(s))")
    return payment


async def fail_payment(session: AsyncSession, payment_id: int) -> BillPayment:
    """Gateway reported failure: release the linked bills for another attempt."""
    payment = await _lock_payment(session, payment_id)

    if payment.status == PaymentStatus.failed.value:
        return payment
    if payment.status != PaymentStatus.pending.value:
        raise StateError(f"Cannot fail payment with status: {payment.status}")

    _release_bills(payment)
    payment.status = PaymentStatus.failed.value

    await session.commit()
    logging.info(f"Payment {payment.reference} failed, bills released")
    return payment


def _release_bills(payment: BillPayment) -> None:
    for bill in list(payment.bills):
        bill.payment_id = None


async def record_bill_payment(
    session: AsyncSession,
    bill_id: int,
    amount: Union[Decimal, int, float, str],
) -> Bill:
    """Record money received against one bill (full or partial)."""
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")

    stmt = select(Bill).where(Bill.id == bill_id).with_for_update()
    bill = (await session.execute(stmt)).scalar_one_or_none()
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found")
    if bill.deleted_at is not None or bill.status not in PAYABLE_STATUSES + (BillStatus.partially_paid.value,):
        raise StateError(f"Cannot record payment for bill with status: {bill.status}")

    _apply_amount(bill, amount)
    await session.commit()
    logging.info(f"Bill {bill.bill_number}: received {amount}, status {bill.status}")
    return bill


async def confirm_cash_payment(
    session: AsyncSession,
    bill_id: int,
    amount: Union[Decimal, int, float, str],
    confirmed_by: Optional[int] = None,
) -> BillPayment:
    """
    Staff confirms cash received for a bill.

    A pending online payment holding the bill is failed first, so the
    tenant cannot be charged twice.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")

    stmt = select(Bill).where(Bill.id == bill_id).with_for_update()
    bill = (await session.execute(stmt)).scalar_one_or_none()
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found")
    if bill.deleted_at is not None or bill.status not in PAYABLE_STATUSES + (BillStatus.partially_paid.value,):
        raise StateError(f"Cannot confirm payment for bill with status: {bill.status}")

    if bill.payment_id:
        online = await _lock_payment(session, bill.payment_id)
        if online.status == PaymentStatus.pending.value:
            logging.warning(f"Cancelling pending online payment {online.reference} in favour of cash")
            _release_bills(online)
            online.status = PaymentStatus.failed.value

    payment = BillPayment(
        amount=amount,
        method=PaymentMethod.cash.value,
        status=PaymentStatus.completed.value,
        reference=_new_reference(),
        paid_by=bill.tenant_id,
        confirmed_by=confirmed_by,
        payment_date=datetime.now(timezone.utc),
    )
    session.add(payment)
    await session.flush()

    _apply_amount(bill, amount)
    bill.payment_id = payment.id

    await session.commit()
    logging.info(f"Cash payment {payment.reference} confirmed for bill {bill.bill_number}: {amount}")
    return payment
