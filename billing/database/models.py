import enum
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from sqlalchemy import BigInteger, String, Boolean, ForeignKey, Integer, Numeric, DateTime, Text, DATE, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from billing.database.core import Base

# Enums
class ContractStatus(str, enum.Enum):
    active = "active"
    pending = "pending"
    terminated = "terminated"
    expired = "expired"

class BillType(str, enum.Enum):
    monthly_rent = "monthly_rent"
    utilities = "utilities"
    other = "other"

class BillStatus(str, enum.Enum):
    draft = "draft"
    issued = "issued"
    overdue = "overdue"
    paid = "paid"
    partially_paid = "partially_paid"
    cancelled = "cancelled"

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"

class PaymentMethod(str, enum.Enum):
    online = "online"
    cash = "cash"


# Statuses that occupy a billing period
BILLED_STATUSES = (
    BillStatus.issued.value,
    BillStatus.overdue.value,
    BillStatus.paid.value,
    BillStatus.partially_paid.value,
)


# 3.1 Building (tariffs + utility closing day)
class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    address: Mapped[Optional[str]] = mapped_column(String)

    electric_unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)
    water_unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)
    closing_day: Mapped[int] = mapped_column(Integer, default=25)  # Day-of-month ending a utility period

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    rooms: Mapped[List["Room"]] = relationship(back_populates="building")


# 3.2 Room
class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), index=True)
    room_number: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Occupied when set
    current_contract_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("contracts.id", use_alter=True, name="fk_rooms_current_contract"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    building: Mapped["Building"] = relationship(back_populates="rooms")
    contracts: Mapped[List["Contract"]] = relationship(
        back_populates="room", foreign_keys="Contract.room_id"
    )
    readings: Mapped[List["UtilityReading"]] = relationship(back_populates="room")


# 3.3 Tenant
class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String)
    phone: Mapped[Optional[str]] = mapped_column(String)
    email: Mapped[Optional[str]] = mapped_column(String)

    # Notification delivery target
    tg_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, index=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    contracts: Mapped[List["Contract"]] = relationship(back_populates="tenant")


# 3.4 Contract (owned by the tenancy subsystem, read-only here)
class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), index=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)

    start_date: Mapped[date] = mapped_column(DATE)
    end_date: Mapped[date] = mapped_column(DATE)

    rent_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    payment_cycle_months: Mapped[int] = mapped_column(Integer, default=1)
    penalty_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)  # Percentage

    status: Mapped[ContractStatus] = mapped_column(String, default=ContractStatus.active.value)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    room: Mapped["Room"] = relationship(back_populates="contracts", foreign_keys=[room_id])
    tenant: Mapped["Tenant"] = relationship(back_populates="contracts")
    bills: Mapped[List["Bill"]] = relationship(back_populates="contract")


# 3.5 UtilityReading (one row per room and billing month)
class UtilityReading(Base):
    __tablename__ = "utility_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"))
    billing_month: Mapped[int] = mapped_column(Integer)
    billing_year: Mapped[int] = mapped_column(Integer)

    prev_electric: Mapped[int] = mapped_column(Integer, default=0)
    curr_electric: Mapped[int] = mapped_column(Integer, default=0)
    prev_water: Mapped[int] = mapped_column(Integer, default=0)
    curr_water: Mapped[int] = mapped_column(Integer, default=0)

    # Tariff snapshot at the time of recording
    electric_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)
    water_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)

    is_electric_reset: Mapped[bool] = mapped_column(Boolean, default=False)
    is_water_reset: Mapped[bool] = mapped_column(Boolean, default=False)

    # Set once when consumed by a bill; never reassigned
    bill_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bills.id"), unique=True, nullable=True)

    recorded_date: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('room_id', 'billing_month', 'billing_year', name='uq_room_utility_period'),
    )

    room: Mapped["Room"] = relationship(back_populates="readings")
    bill: Mapped[Optional["Bill"]] = relationship(back_populates="utility_reading", foreign_keys=[bill_id])

    @property
    def electric_used(self) -> int:
        return self.curr_electric - self.prev_electric

    @property
    def water_used(self) -> int:
        return self.curr_water - self.prev_water


# 3.6 BillPayment (Payment collaborator's record)
class BillPayment(Base):
    __tablename__ = "bill_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    method: Mapped[PaymentMethod] = mapped_column(String, default=PaymentMethod.online.value)
    status: Mapped[PaymentStatus] = mapped_column(String, default=PaymentStatus.pending.value)

    reference: Mapped[Optional[str]] = mapped_column(String, unique=True, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    paid_by: Mapped[Optional[int]] = mapped_column(ForeignKey("tenants.id"), nullable=True)
    confirmed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Staff user for cash

    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    bills: Mapped[List["Bill"]] = relationship(back_populates="payment")


# 3.7 Bill
class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Assigned on issue; drafts have none
    bill_number: Mapped[Optional[str]] = mapped_column(String, unique=True, nullable=True)

    contract_id: Mapped[Optional[int]] = mapped_column(ForeignKey("contracts.id"), nullable=True)
    tenant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tenants.id"), nullable=True)

    bill_type: Mapped[BillType] = mapped_column(String, default=BillType.other.value)
    billing_period_start: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)
    billing_period_end: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(DATE, nullable=True)

    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)
    penalty_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=0)

    status: Mapped[BillStatus] = mapped_column(String, default=BillStatus.draft.value)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Backing reading of a utilities draft, re-read on publish
    reading_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("utility_readings.id", use_alter=True, name="fk_bills_draft_reading"), nullable=True
    )
    payment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bill_payments.id"), nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_bills_contract_type_period', 'contract_id', 'bill_type', 'billing_period_start'),
        Index('ix_bills_status_due', 'status', 'due_date'),
    )

    contract: Mapped[Optional["Contract"]] = relationship(back_populates="bills")
    tenant: Mapped[Optional["Tenant"]] = relationship()
    service_charges: Mapped[List["ServiceCharge"]] = relationship(
        back_populates="bill", cascade="all, delete-orphan", order_by="ServiceCharge.id"
    )
    utility_reading: Mapped[Optional["UtilityReading"]] = relationship(
        back_populates="bill", foreign_keys="UtilityReading.bill_id", uselist=False
    )
    payment: Mapped[Optional["BillPayment"]] = relationship(back_populates="bills")

    @property
    def amount_due(self) -> Decimal:
        """Outstanding amount; penalty counts once overdue, through partial payments."""
        if self.status == BillStatus.paid.value:
            return Decimal(0)
        total = Decimal(self.total_amount or 0)
        if self.status in (BillStatus.overdue.value, BillStatus.partially_paid.value):
            total += Decimal(self.penalty_amount or 0)
        return total - Decimal(self.paid_amount or 0)


# 3.8 ServiceChargeLine
class ServiceCharge(Base):
    __tablename__ = "bill_service_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), index=True)

    service_type: Mapped[str] = mapped_column(String)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    description: Mapped[Optional[str]] = mapped_column(String)

    bill: Mapped["Bill"] = relationship(back_populates="service_charges")
