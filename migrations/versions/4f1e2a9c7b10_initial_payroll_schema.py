"""initial payroll schema

Revision ID: 4f1e2a9c7b10
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1e2a9c7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'role_id'),
    )

    op.create_table(
        'staff_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('base_salary', sa.Numeric(14, 2), nullable=False),
        sa.Column('base_salary_type', sa.String(length=16), nullable=False),
        sa.Column('shift_rate', sa.Numeric(14, 2), nullable=False),
        sa.Column('norm_days', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_index('ix_staff_profiles_active_role', 'staff_profiles', ['active', 'role'])

    op.create_table(
        'staff_attendance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('late_minutes', sa.Integer(), nullable=False),
        sa.Column('overtime_minutes', sa.Integer(), nullable=False),
        sa.Column('actual_start', sa.DateTime(), nullable=True),
        sa.Column('actual_end', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_staff_attendance_staff_id', 'staff_attendance', ['staff_id'])
    op.create_index('ix_staff_attendance_staff_date', 'staff_attendance', ['staff_id', 'work_date'])

    op.create_table(
        'staff_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_staff_shifts_staff_id', 'staff_shifts', ['staff_id'])
    op.create_index('ix_staff_shifts_staff_date', 'staff_shifts', ['staff_id', 'work_date'])

    op.create_table(
        'payroll_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('late_penalty_type', sa.String(length=20), nullable=False),
        sa.Column('late_penalty_rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('absence_penalty_rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('default_norm_days', sa.Integer(), nullable=False),
        sa.Column('default_base_salary', sa.Numeric(14, 2), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'payroll_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('base_salary', sa.Numeric(14, 2), nullable=False),
        sa.Column('base_salary_type', sa.String(length=16), nullable=False),
        sa.Column('shift_rate', sa.Numeric(14, 2), nullable=False),
        sa.Column('norm_days', sa.Integer(), nullable=False),
        sa.Column('worked_days', sa.Integer(), nullable=False),
        sa.Column('worked_shifts', sa.Integer(), nullable=False),
        sa.Column('accruals', sa.Numeric(14, 2), nullable=False),
        sa.Column('bonuses', sa.Numeric(14, 2), nullable=False),
        sa.Column('bonus_details', sa.JSON(), nullable=True),
        sa.Column('advance', sa.Numeric(14, 2), nullable=False),
        sa.Column('advance_date', sa.Date(), nullable=True),
        sa.Column('late_penalties', sa.Numeric(14, 2), nullable=False),
        sa.Column('absence_penalties', sa.Numeric(14, 2), nullable=False),
        sa.Column('penalty_details', sa.JSON(), nullable=True),
        sa.Column('user_fines', sa.Numeric(14, 2), nullable=False),
        sa.Column('deductions', sa.Numeric(14, 2), nullable=False),
        sa.Column('debt_carry_in', sa.Numeric(14, 2), nullable=False),
        sa.Column('total', sa.Numeric(14, 2), nullable=False),
        sa.Column('debt', sa.Numeric(14, 2), nullable=False),
        sa.Column('debt_processed', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('overrides', sa.JSON(), nullable=False),
        sa.Column('history', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_profiles.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('staff_id', 'period', name='uq_payroll_staff_period'),
    )
    op.create_index('ix_payroll_records_staff_id', 'payroll_records', ['staff_id'])
    op.create_index('ix_payroll_records_period_status', 'payroll_records', ['period', 'status'])

    op.create_table(
        'payroll_fines',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('payroll_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['payroll_id'], ['payroll_records.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payroll_fines_payroll_id', 'payroll_fines', ['payroll_id'])


def downgrade() -> None:
    op.drop_index('ix_payroll_fines_payroll_id', table_name='payroll_fines')
    op.drop_table('payroll_fines')
    op.drop_index('ix_payroll_records_period_status', table_name='payroll_records')
    op.drop_index('ix_payroll_records_staff_id', table_name='payroll_records')
    op.drop_table('payroll_records')
    op.drop_table('payroll_settings')
    op.drop_index('ix_staff_shifts_staff_date', table_name='staff_shifts')
    op.drop_index('ix_staff_shifts_staff_id', table_name='staff_shifts')
    op.drop_table('staff_shifts')
    op.drop_index('ix_staff_attendance_staff_date', table_name='staff_attendance')
    op.drop_index('ix_staff_attendance_staff_id', table_name='staff_attendance')
    op.drop_table('staff_attendance')
    op.drop_index('ix_staff_profiles_active_role', table_name='staff_profiles')
    op.drop_table('staff_profiles')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
