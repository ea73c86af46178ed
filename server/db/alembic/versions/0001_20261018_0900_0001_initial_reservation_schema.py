"""Initial reservation schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create reservations table
    op.create_table('reservations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('gateway_payment_id', sa.String(length=255), nullable=True),
        sa.Column('account_id', sa.String(length=128), nullable=True),
        sa.Column('guest_name', sa.String(length=255), nullable=True),
        sa.Column('guest_email', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('service_id', sa.String(length=128), nullable=False),
        sa.Column('option_id', sa.String(length=128), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('multi_participant', sa.Boolean(), nullable=False),
        sa.Column('participants', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('amount_paid', sa.Integer(), nullable=False),
        sa.Column('remaining_balance', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('feedback_rating', sa.Integer(), nullable=True),
        sa.Column('feedback_comment', sa.Text(), nullable=True),
        sa.Column('feedback_submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('party_size > 0', name='ck_reservation_party_size_positive'),
        sa.CheckConstraint('total_amount >= 0', name='ck_reservation_total_non_negative'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_reservation_paid_non_negative'),
        sa.CheckConstraint('amount_paid <= total_amount', name='ck_reservation_paid_within_total'),
        sa.CheckConstraint('remaining_balance = total_amount - amount_paid', name='ck_reservation_remaining_balance'),
        sa.CheckConstraint('account_id IS NOT NULL OR guest_email IS NOT NULL', name='ck_reservation_holder_present'),
        sa.CheckConstraint(
            'feedback_rating IS NULL OR (feedback_rating >= 1 AND feedback_rating <= 5)',
            name='ck_reservation_feedback_rating'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_reservations'),
        sa.UniqueConstraint('payment_reference', name='uq_reservations_payment_reference')
    )
    op.create_index('ix_reservations_account_id', 'reservations', ['account_id'], unique=False)
    op.create_index('ix_reservations_category', 'reservations', ['category'], unique=False)
    op.create_index('ix_reservations_gateway_payment_id', 'reservations', ['gateway_payment_id'], unique=False)
    op.create_index('ix_reservations_status', 'reservations', ['status'], unique=False)

    # Create payment_ledger_entries table
    op.create_table('payment_ledger_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reservation_id', sa.Uuid(), nullable=False),
        sa.Column('participant', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('gateway_reference', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_ledger_amount_positive'),
        sa.CheckConstraint('length(participant) > 0', name='ck_ledger_participant_not_empty'),
        sa.ForeignKeyConstraint(
            ['reservation_id'], ['reservations.id'],
            name='fk_payment_ledger_entries_reservation_id_reservations', ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_payment_ledger_entries')
    )
    op.create_index(
        'ix_payment_ledger_entries_reservation_id', 'payment_ledger_entries', ['reservation_id'], unique=False
    )

    # Create reservation_cancellations table
    op.create_table('reservation_cancellations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reservation_id', sa.Uuid(), nullable=False),
        sa.Column('canceled_by', sa.String(length=128), nullable=False),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('refund_amount', sa.Integer(), nullable=False),
        sa.Column('refund_status', sa.String(length=20), nullable=False),
        sa.Column('refund_reference', sa.String(length=255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.CheckConstraint('refund_amount >= 0', name='ck_cancellation_refund_non_negative'),
        sa.ForeignKeyConstraint(
            ['reservation_id'], ['reservations.id'],
            name='fk_reservation_cancellations_reservation_id_reservations', ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_reservation_cancellations'),
        sa.UniqueConstraint('reservation_id', name='uq_reservation_cancellations_reservation_id')
    )

    # Create carts table
    op.create_table('carts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_carts'),
        sa.UniqueConstraint('account_id', name='uq_carts_account_id')
    )

    # Create cart_items table
    op.create_table('cart_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('cart_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('service_id', sa.String(length=128), nullable=False),
        sa.Column('option_id', sa.String(length=128), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('participants', sa.JSON(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('line_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('party_size > 0', name='ck_cart_item_party_size_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_cart_item_unit_price_non_negative'),
        sa.CheckConstraint('line_price = unit_price * party_size', name='ck_cart_item_line_price'),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], name='fk_cart_items_cart_id_carts', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_cart_items'),
        sa.UniqueConstraint('cart_id', 'position', name='uq_cart_item_position')
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'], unique=False)

    # Create materialization_failures table
    op.create_table('materialization_failures',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=False),
        sa.Column('detail', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('resolved_by', sa.String(length=128), nullable=True),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_materialization_failures')
    )
    op.create_index(
        'ix_materialization_failures_payment_reference', 'materialization_failures', ['payment_reference'], unique=False
    )
    op.create_index('ix_materialization_failures_error_code', 'materialization_failures', ['error_code'], unique=False)
    op.create_index('ix_materialization_failures_resolved', 'materialization_failures', ['resolved'], unique=False)

    # Create idempotency_records table
    op.create_table('idempotency_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint(
            'response_status_code >= 100 AND response_status_code <= 599',
            name='ck_idempotency_status_code_valid'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_idempotency_records'),
        sa.UniqueConstraint('idempotency_key', 'method', name='uq_idempotency_key_method')
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'], unique=False)
    op.create_index('ix_idempotency_records_idempotency_key', 'idempotency_records', ['idempotency_key'], unique=False)
    op.create_index('ix_idempotency_records_method', 'idempotency_records', ['method'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('materialization_failures')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('reservation_cancellations')
    op.drop_table('payment_ledger_entries')
    op.drop_table('reservations')
