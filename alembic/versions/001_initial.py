"""Initial migration - users, clients, stage registry, leads, stage history, affiliate tracking

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

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
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=256), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('role', sa.Enum('admin', 'consultant', 'comercial', 'doctor', 'client', name='userrole'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_external_vendor', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('affiliate_code', sa.String(length=32), nullable=True),
        sa.Column('commission_rate', sa.String(length=16), nullable=True, server_default='0.10'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_affiliate_code'), 'users', ['affiliate_code'], unique=True)

    op.create_table(
        'consultants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.String(length=16), nullable=True, server_default='0.10'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_consultants_user_id'), 'consultants', ['user_id'], unique=False)

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('consultant_id', sa.Integer(), nullable=True),
        sa.Column('affiliate_vendor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consultant_id'], ['consultants.id']),
        sa.ForeignKeyConstraint(['affiliate_vendor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clients_user_id'), 'clients', ['user_id'], unique=False)
    op.create_index(op.f('ix_clients_affiliate_vendor_id'), 'clients', ['affiliate_vendor_id'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('affiliate_vendor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['affiliate_vendor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_orders_client_id'), 'orders', ['client_id'], unique=False)

    op.create_table(
        'lead_stages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('slug', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=False, server_default='blue'),
        sa.Column('icon', sa.String(length=64), nullable=True, server_default='Circle'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_lead_stages_slug'), 'lead_stages', ['slug'], unique=True)

    op.create_table(
        'leads',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('patient_name', sa.String(length=256), nullable=True),
        sa.Column('patient_email', sa.String(length=255), nullable=True),
        sa.Column('patient_phone', sa.String(length=64), nullable=True),
        sa.Column('consultant_id', sa.Integer(), nullable=True),
        sa.Column('assigned_consultant_id', sa.Integer(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=128), nullable=False, server_default='novo'),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=64), nullable=False, server_default='intake'),
        sa.Column('estimated_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('company', sa.String(length=256), nullable=True),
        sa.Column('job_title', sa.String(length=256), nullable=True),
        sa.Column('lead_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('last_interaction', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_follow_up', sa.DateTime(timezone=True), nullable=True),
        sa.Column('products_interest', sa.JSON(), nullable=True),
        sa.Column('budget', sa.Numeric(10, 2), nullable=True),
        sa.Column('expected_close_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('conversion_probability', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('address', sa.String(length=512), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('state', sa.String(length=2), nullable=True),
        sa.Column('zip_code', sa.String(length=16), nullable=True),
        sa.Column('linkedin', sa.String(length=256), nullable=True),
        sa.Column('instagram', sa.String(length=128), nullable=True),
        sa.Column('referral_source', sa.String(length=256), nullable=True),
        sa.Column('lost_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consultant_id'], ['consultants.id']),
        sa.ForeignKeyConstraint(['assigned_consultant_id'], ['consultants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_leads_client_id'), 'leads', ['client_id'], unique=False)
    op.create_index(op.f('ix_leads_patient_email'), 'leads', ['patient_email'], unique=False)
    op.create_index(op.f('ix_leads_assigned_consultant_id'), 'leads', ['assigned_consultant_id'], unique=False)
    op.create_index(op.f('ix_leads_status'), 'leads', ['status'], unique=False)

    op.create_table(
        'lead_stage_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(length=128), nullable=True),
        sa.Column('new_status', sa.String(length=128), nullable=False),
        sa.Column('by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_lead_stage_history_lead_id'), 'lead_stage_history', ['lead_id'], unique=False)

    op.create_table(
        'affiliate_tracking',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('affiliate_vendor_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.Enum('click', 'registration', 'purchase', name='affiliateeventtype'), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('order_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('commission_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['affiliate_vendor_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_affiliate_tracking_affiliate_vendor_id'), 'affiliate_tracking', ['affiliate_vendor_id'], unique=False)
    op.create_index(op.f('ix_affiliate_tracking_event_type'), 'affiliate_tracking', ['event_type'], unique=False)


def downgrade() -> None:
    op.drop_table('affiliate_tracking')
    op.drop_table('lead_stage_history')
    op.drop_table('leads')
    op.drop_table('lead_stages')
    op.drop_table('orders')
    op.drop_table('clients')
    op.drop_table('consultants')
    op.drop_table('users')

    # Drop enum types
    op.execute('DROP TYPE IF EXISTS affiliateeventtype')
    op.execute('DROP TYPE IF EXISTS userrole')
