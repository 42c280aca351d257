"""add maintenance reminder tables

Revision ID: 001_maintenance_reminders
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_maintenance_reminders'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_email_preferences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('maintenance_reminders', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'bikes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_bikes_owner_id', 'bikes', ['owner_id'])

    op.create_table(
        'scheduled_maintenances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('bike_id', sa.String(36), sa.ForeignKey('bikes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scheduled_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('service_description', sa.Text(), nullable=False),
        sa.Column('notification_days_before', sa.Integer(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_scheduled_maintenances_bike_id', 'scheduled_maintenances', ['bike_id'])
    op.create_index('ix_scheduled_maintenances_pending', 'scheduled_maintenances', ['is_completed', 'scheduled_date'])

    op.create_table(
        'email_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scheduled_maintenance_id', sa.String(36), sa.ForeignKey('scheduled_maintenances.id', ondelete='SET NULL'), nullable=True),
        sa.Column('email_type', sa.String(), nullable=False),
        sa.Column('recipient_email', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('resend_id', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'ix_email_logs_dedup', 'email_logs',
        ['user_id', 'scheduled_maintenance_id', 'email_type', 'status'],
    )


def downgrade() -> None:
    op.drop_index('ix_email_logs_dedup', table_name='email_logs')
    op.drop_table('email_logs')
    op.drop_index('ix_scheduled_maintenances_pending', table_name='scheduled_maintenances')
    op.drop_index('ix_scheduled_maintenances_bike_id', table_name='scheduled_maintenances')
    op.drop_table('scheduled_maintenances')
    op.drop_index('ix_bikes_owner_id', table_name='bikes')
    op.drop_table('bikes')
    op.drop_table('user_email_preferences')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
