"""Points ledger, ledger locks, check-ins and redemptions.

Revision ID: 20261001_02
Revises: 20261001_01
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261001_02"
down_revision: Union[str, None] = "20261001_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


checkin_reward_status = sa.Enum(
    "awarded",
    "daily_limit",
    "restricted",
    name="checkin_reward_status",
)
redemption_status = sa.Enum(
    "active",
    "consumed",
    "void",
    name="redemption_status",
)


def upgrade() -> None:
    op.create_table(
        "ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("reference_type", sa.String(length=32), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_nonzero"),
    )
    op.create_index(
        "ix_ledger_entries_account_created",
        "ledger_entries",
        ["account_id", "created_at"],
    )

    op.create_table(
        "ledger_locks",
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id"),
            primary_key=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "checkins",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reward_status", checkin_reward_status, nullable=False),
        sa.Column(
            "ledger_entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("ledger_entries.id"),
            nullable=True,
        ),
        sa.UniqueConstraint("event_id", "account_id", name="uq_checkins_event_account"),
    )
    op.create_index("ix_checkins_event_id", "checkins", ["event_id"])
    op.create_index("ix_checkins_account_checked_in_at", "checkins", ["account_id", "checked_in_at"])

    op.create_table(
        "redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="active"),
        sa.Column(
            "ledger_entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("ledger_entries.id"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("code", name="uq_redemptions_code"),
        sa.UniqueConstraint("ledger_entry_id", name="uq_redemptions_ledger_entry_id"),
    )
    op.create_index("ix_redemptions_account_id", "redemptions", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_redemptions_account_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_checkins_account_checked_in_at", table_name="checkins")
    op.drop_index("ix_checkins_event_id", table_name="checkins")
    op.drop_table("checkins")
    op.drop_table("ledger_locks")
    op.drop_index("ix_ledger_entries_account_created", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    bind = op.get_bind()
    redemption_status.drop(bind, checkfirst=True)
    checkin_reward_status.drop(bind, checkfirst=True)
