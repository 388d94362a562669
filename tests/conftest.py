import os

# Keep the module-level engine off PostgreSQL during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import date
from decimal import Decimal

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from billing.database.core import Base, build_engine, build_sessionmaker
from billing.database.models import (
    Bill, BillStatus, BillType, Building, Contract, ContractStatus,
    Room, ServiceCharge, Tenant, UtilityReading
)


@pytest_asyncio.fixture
async def async_session():
    # In-memory SQLite on one shared connection, visible to every session
    engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = build_sessionmaker(engine)

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


class Seed:
    """Shortcuts for the rows most tests need. Each row is committed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def building(self, closing_day=25, electric=3500, water=25000, service_fee=150000, **kw) -> Building:
        building = Building(
            name=kw.pop("name", "Sunrise"),
            closing_day=closing_day,
            electric_unit_price=Decimal(electric),
            water_unit_price=Decimal(water),
            service_fee=Decimal(service_fee),
            is_active=True,
            **kw,
        )
        self.session.add(building)
        await self.session.commit()
        return building

    async def tenant(self, full_name="Nguyen Van A", tg_id=None) -> Tenant:
        tenant = Tenant(full_name=full_name, phone="+84900000000", tg_id=tg_id)
        self.session.add(tenant)
        await self.session.commit()
        return tenant

    async def room(self, building: Building, room_number="101") -> Room:
        room = Room(building_id=building.id, room_number=room_number, is_active=True)
        self.session.add(room)
        await self.session.commit()
        return room

    async def contract(
        self,
        room: Room,
        tenant: Tenant,
        start=date(2026, 1, 1),
        end=date(2026, 12, 31),
        rent=5000000,
        cycle=1,
        status=ContractStatus.active,
        occupy=True,
    ) -> Contract:
        contract = Contract(
            room_id=room.id,
            tenant_id=tenant.id,
            start_date=start,
            end_date=end,
            rent_amount=Decimal(rent),
            payment_cycle_months=cycle,
            penalty_rate=Decimal(0),
            status=status.value,
        )
        self.session.add(contract)
        await self.session.commit()
        if occupy:
            room.current_contract_id = contract.id
            await self.session.commit()
        return contract

    async def reading(
        self,
        room: Room,
        month: int,
        year: int,
        electric=(0, 0),
        water=(0, 0),
        electric_price=3500,
        water_price=25000,
        **kw,
    ) -> UtilityReading:
        reading = UtilityReading(
            room_id=room.id,
            billing_month=month,
            billing_year=year,
            prev_electric=electric[0],
            curr_electric=electric[1],
            prev_water=water[0],
            curr_water=water[1],
            electric_price=Decimal(electric_price),
            water_price=Decimal(water_price),
            is_electric_reset=kw.pop("is_electric_reset", False),
            is_water_reset=kw.pop("is_water_reset", False),
            **kw,
        )
        self.session.add(reading)
        await self.session.commit()
        return reading

    async def bill(
        self,
        contract: Contract,
        start: date,
        end: date,
        bill_type=BillType.monthly_rent,
        status=BillStatus.issued,
        total=5000000,
        due_date=None,
        bill_number=None,
        **kw,
    ) -> Bill:
        bill = Bill(
            bill_number=bill_number or f"B-T-{contract.id}-{start:%Y%m%d}-{bill_type.value}",
            contract_id=contract.id,
            tenant_id=contract.tenant_id,
            bill_type=bill_type.value,
            billing_period_start=start,
            billing_period_end=end,
            due_date=due_date or end,
            total_amount=Decimal(total),
            paid_amount=Decimal(kw.pop("paid_amount", 0)),
            penalty_amount=Decimal(kw.pop("penalty_amount", 0)),
            status=status.value,
            description=kw.pop("description", "Seeded bill"),
            service_charges=[
                ServiceCharge(
                    service_type="Seeded", quantity=Decimal(1),
                    unit_price=Decimal(total), amount=Decimal(total),
                )
            ],
            **kw,
        )
        self.session.add(bill)
        await self.session.commit()
        return bill


@pytest_asyncio.fixture
async def seed(async_session):
    return Seed(async_session)
