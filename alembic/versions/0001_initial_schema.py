"""initial raffle schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "raffles",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_type", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entry_price", sa.BigInteger(), nullable=False),
        sa.Column("max_entries_per_user", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("winner_count", sa.Integer(), nullable=False),
        sa.Column("prize_tiers", sa.JSON(), nullable=True),
        sa.Column("platform_fee_bps", sa.Integer(), nullable=False),
        sa.Column("seed_mode", sa.String(length=20), nullable=False),
        sa.Column("allow_multiple_wins", sa.Boolean(), nullable=False),
        sa.Column("total_entries", sa.BigInteger(), nullable=False),
        sa.Column("total_participants", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("draw_seed", sa.String(length=66), nullable=True),
        sa.Column("draw_block_number", sa.BigInteger(), nullable=True),
        sa.Column("draw_block_hash", sa.String(length=66), nullable=True),
        sa.Column("draw_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('scheduled','active','ending','paused','drawing','completed','cancelled')",
            name=op.f("ck_raffles_status_enum"),
        ),
        sa.CheckConstraint(
            "raffle_type IN ('daily','weekly','mega','flash','monthly')",
            name=op.f("ck_raffles_raffle_type_enum"),
        ),
        sa.CheckConstraint(
            "seed_mode IN ('block_hash','crypto')", name=op.f("ck_raffles_seed_mode_enum")
        ),
        sa.CheckConstraint("entry_price > 0", name=op.f("ck_raffles_entry_price_positive")),
        sa.CheckConstraint(
            "winner_count >= 1 AND winner_count <= 100",
            name=op.f("ck_raffles_winner_count_range"),
        ),
        sa.CheckConstraint(
            "platform_fee_bps >= 0 AND platform_fee_bps <= 1000",
            name=op.f("ck_raffles_platform_fee_range"),
        ),
        sa.CheckConstraint("end_time > start_time", name=op.f("ck_raffles_time_window")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffles")),
    )
    op.create_index(op.f("ix_raffles_status"), "raffles", ["status"], unique=False)

    op.create_table(
        "raffle_entries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("wallet_address", sa.String(length=42), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.BigInteger(), nullable=False),
        sa.Column("transaction_hash", sa.String(length=66), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("refunded", sa.Boolean(), nullable=False),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("units >= 1", name=op.f("ck_raffle_entries_units_positive")),
        sa.CheckConstraint(
            "amount_paid >= 0", name=op.f("ck_raffle_entries_amount_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_raffle_entries_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffle_entries")),
        sa.UniqueConstraint(
            "transaction_hash", name=op.f("uq_raffle_entries_transaction_hash")
        ),
    )
    op.create_index(
        op.f("ix_raffle_entries_raffle_id"), "raffle_entries", ["raffle_id"], unique=False
    )
    op.create_index(
        op.f("ix_raffle_entries_wallet_address"),
        "raffle_entries",
        ["wallet_address"],
        unique=False,
    )

    op.create_table(
        "draw_results",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("seed", sa.String(length=66), nullable=False),
        sa.Column("seed_mode", sa.String(length=20), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("block_hash", sa.String(length=66), nullable=True),
        sa.Column("total_tickets", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.BigInteger(), nullable=False),
        sa.Column("total_prize_distributed", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_draw_results_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_results")),
        sa.UniqueConstraint("raffle_id", name=op.f("uq_draw_results_raffle_id")),
    )

    op.create_table(
        "raffle_winners",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("draw_result_id", ID_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("wallet_address", sa.String(length=42), nullable=False),
        sa.Column("ticket_index", sa.Integer(), nullable=False),
        sa.Column("total_tickets", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(length=120), nullable=False),
        sa.Column("prize_amount", sa.BigInteger(), nullable=False),
        sa.Column("payout_status", sa.String(length=20), nullable=False),
        sa.Column("payout_attempts", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "payout_status IN ('pending','processing','paid','failed')",
            name=op.f("ck_raffle_winners_payout_status_enum"),
        ),
        sa.CheckConstraint(
            "prize_amount >= 0", name=op.f("ck_raffle_winners_prize_amount_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["draw_result_id"],
            ["draw_results.id"],
            name=op.f("fk_raffle_winners_draw_result_id_draw_results"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_raffle_winners_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_raffle_winners")),
        sa.UniqueConstraint(
            "raffle_id", "ticket_index", name=op.f("uq_raffle_winners_raffle_id_ticket_index")
        ),
        sa.UniqueConstraint(
            "raffle_id", "position", name=op.f("uq_raffle_winners_raffle_id_position")
        ),
    )
    op.create_index(
        op.f("ix_raffle_winners_raffle_id"), "raffle_winners", ["raffle_id"], unique=False
    )
    op.create_index(
        op.f("ix_raffle_winners_draw_result_id"),
        "raffle_winners",
        ["draw_result_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_winners_wallet_address"),
        "raffle_winners",
        ["wallet_address"],
        unique=False,
    )
    op.create_index(
        op.f("ix_raffle_winners_payout_status"),
        "raffle_winners",
        ["payout_status"],
        unique=False,
    )

    op.create_table(
        "payout_records",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("winner_id", ID_TYPE, nullable=False),
        sa.Column("raffle_id", ID_TYPE, nullable=False),
        sa.Column("wallet_address", sa.String(length=42), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','processing','paid','failed')",
            name=op.f("ck_payout_records_status_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_payout_records_raffle_id_raffles"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["winner_id"],
            ["raffle_winners.id"],
            name=op.f("fk_payout_records_winner_id_raffle_winners"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payout_records")),
        sa.UniqueConstraint(
            "winner_id", "attempt", name=op.f("uq_payout_records_winner_id_attempt")
        ),
    )
    op.create_index(
        op.f("ix_payout_records_winner_id"), "payout_records", ["winner_id"], unique=False
    )
    op.create_index(
        op.f("ix_payout_records_raffle_id"), "payout_records", ["raffle_id"], unique=False
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("actor_type", sa.String(length=20), nullable=False),
        sa.Column("actor", sa.String(length=100), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("subject_table", sa.String(length=50), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=True),
        sa.Column("raffle_id", ID_TYPE, nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "actor_type IN ('system','operator','user')",
            name=op.f("ck_audit_logs_actor_type_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["raffle_id"],
            ["raffles.id"],
            name=op.f("fk_audit_logs_raffle_id_raffles"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_logs")),
    )
    op.create_index(op.f("ix_audit_logs_action"), "audit_logs", ["action"], unique=False)
    op.create_index(op.f("ix_audit_logs_raffle_id"), "audit_logs", ["raffle_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_audit_logs_raffle_id"), table_name="audit_logs")
    op.drop_index(op.f("ix_audit_logs_action"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index(op.f("ix_payout_records_raffle_id"), table_name="payout_records")
    op.drop_index(op.f("ix_payout_records_winner_id"), table_name="payout_records")
    op.drop_table("payout_records")
    op.drop_index(op.f("ix_raffle_winners_payout_status"), table_name="raffle_winners")
    op.drop_index(op.f("ix_raffle_winners_wallet_address"), table_name="raffle_winners")
    op.drop_index(op.f("ix_raffle_winners_draw_result_id"), table_name="raffle_winners")
    op.drop_index(op.f("ix_raffle_winners_raffle_id"), table_name="raffle_winners")
    op.drop_table("raffle_winners")
    op.drop_table("draw_results")
    op.drop_index(op.f("ix_raffle_entries_wallet_address"), table_name="raffle_entries")
    op.drop_index(op.f("ix_raffle_entries_raffle_id"), table_name="raffle_entries")
    op.drop_table("raffle_entries")
    op.drop_index(op.f("ix_raffles_status"), table_name="raffles")
    op.drop_table("raffles")
