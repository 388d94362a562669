"""initial billing schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-01-05 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Buildings
    op.create_table('buildings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('electric_unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('water_unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('service_fee', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('closing_day', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Tenants
    op.create_table('tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('tg_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tenants_tg_id'), 'tenants', ['tg_id'], unique=True)

    # Rooms (current_contract_id FK added after contracts)
    op.create_table('rooms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('building_id', sa.Integer(), nullable=False),
        sa.Column('room_number', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('current_contract_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['building_id'], ['buildings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rooms_building_id'), 'rooms', ['building_id'], unique=False)

    # Contracts
    op.create_table('contracts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.DATE(), nullable=False),
        sa.Column('end_date', sa.DATE(), nullable=False),
        sa.Column('rent_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('payment_cycle_months', sa.Integer(), nullable=False),
        sa.Column('penalty_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_contracts_room_id'), 'contracts', ['room_id'], unique=False)
    op.create_index(op.f('ix_contracts_tenant_id'), 'contracts', ['tenant_id'], unique=False)
    op.create_foreign_key('fk_rooms_current_contract', 'rooms', 'contracts', ['current_contract_id'], ['id'])

    # Payments
    op.create_table('bill_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('reference', sa.String(), nullable=True),
        sa.Column('transaction_id', sa.String(), nullable=True),
        sa.Column('paid_by', sa.Integer(), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['paid_by'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference')
    )

    # Bills (reading_id FK added after utility_readings)
    op.create_table('bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_number', sa.String(), nullable=True),
        sa.Column('contract_id', sa.Integer(), nullable=True),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('bill_type', sa.String(), nullable=False),
        sa.Column('billing_period_start', sa.DATE(), nullable=True),
        sa.Column('billing_period_end', sa.DATE(), nullable=True),
        sa.Column('due_date', sa.DATE(), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('paid_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('penalty_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reading_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['bill_payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_number')
    )
    op.create_index('ix_bills_contract_type_period', 'bills', ['contract_id', 'bill_type', 'billing_period_start'], unique=False)
    op.create_index('ix_bills_status_due', 'bills', ['status', 'due_date'], unique=False)

    # Utility readings
    op.create_table('utility_readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('billing_month', sa.Integer(), nullable=False),
        sa.Column('billing_year', sa.Integer(), nullable=False),
        sa.Column('prev_electric', sa.Integer(), nullable=False),
        sa.Column('curr_electric', sa.Integer(), nullable=False),
        sa.Column('prev_water', sa.Integer(), nullable=False),
        sa.Column('curr_water', sa.Integer(), nullable=False),
        sa.Column('electric_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('water_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('is_electric_reset', sa.Boolean(), nullable=False),
        sa.Column('is_water_reset', sa.Boolean(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('recorded_date', sa.DATE(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_id'),
        sa.UniqueConstraint('room_id', 'billing_month', 'billing_year', name='uq_room_utility_period')
    )
    op.create_foreign_key('fk_bills_draft_reading', 'bills', 'utility_readings', ['reading_id'], ['id'])

    # Bill line items
    op.create_table('bill_service_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('service_type', sa.String(), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bill_service_charges_bill_id'), 'bill_service_charges', ['bill_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_bill_service_charges_bill_id'), table_name='bill_service_charges')
    op.drop_table('bill_service_charges')
    op.drop_constraint('fk_bills_draft_reading', 'bills', type_='foreignkey')
    op.drop_table('utility_readings')
    op.drop_index('ix_bills_status_due', table_name='bills')
    op.drop_index('ix_bills_contract_type_period', table_name='bills')
    op.drop_table('bills')
    op.drop_table('bill_payments')
    op.drop_constraint('fk_rooms_current_contract', 'rooms', type_='foreignkey')
    op.drop_index(op.f('ix_contracts_tenant_id'), table_name='contracts')
    op.drop_index(op.f('ix_contracts_room_id'), table_name='contracts')
    op.drop_table('contracts')
    op.drop_index(op.f('ix_rooms_building_id'), table_name='rooms')
    op.drop_table('rooms')
    op.drop_index(op.f('ix_tenants_tg_id'), table_name='tenants')
    op.drop_table('tenants')
    op.drop_table('buildings')
