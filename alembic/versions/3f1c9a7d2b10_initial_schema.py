"""initial_schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, as SQLModel maps them
chain_enum = sa.Enum("L1", "L2", name="chain")
event_kind_enum = sa.Enum(
    "TRANSFER",
    "SALE",
    "LISTING",
    "BID",
    "BRIDGE_DEPOSIT",
    "BRIDGE_WITHDRAW",
    "POINTS",
    name="eventkind",
)
block_job_status_enum = sa.Enum(
    "PENDING", "ACTIVE", "RETRYING", "DEAD", "DONE", name="blockjobstatus"
)
mint_job_status_enum = sa.Enum(
    "VERIFYING", "NONCING", "SUBMITTED", "CONFIRMED", "FAILED", name="mintjobstatus"
)


def upgrade() -> None:
    """Create indexer tables."""
    op.create_table(
        "block_jobs",
        sa.Column("chain", chain_enum, nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("status", block_job_status_enum, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("is_reindex", sa.Boolean(), nullable=False),
        sa.Column("last_error", sa.String(length=1000), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("chain", "block_number"),
    )
    op.create_index("ix_block_jobs_status", "block_jobs", ["status"])

    op.create_table(
        "mint_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("hash_id", sa.String(length=66), nullable=False),
        sa.Column("l1_tx_hash", sa.String(length=66), nullable=False),
        sa.Column("origin_owner", sa.String(length=42), nullable=False),
        sa.Column("locked_content_hash", sa.String(length=64), nullable=True),
        sa.Column("status", mint_job_status_enum, nullable=False),
        sa.Column("signer", sa.String(length=42), nullable=True),
        sa.Column("nonce", sa.Integer(), nullable=True),
        sa.Column("l2_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("tx_hashes", sa.JSON(), nullable=True),
        sa.Column("submit_attempts", sa.Integer(), nullable=False),
        sa.Column("status_history", sa.JSON(), nullable=True),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hash_id", "l1_tx_hash", name="uq_mint_jobs_deposit"),
    )
    op.create_index("ix_mint_jobs_hash_id", "mint_jobs", ["hash_id"])
    op.create_index("ix_mint_jobs_status", "mint_jobs", ["status"])

    op.create_table(
        "ethscriptions",
        sa.Column("hash_id", sa.String(length=66), nullable=False),
        sa.Column("sha", sa.String(length=64), nullable=True),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("creator", sa.String(length=42), nullable=True),
        sa.Column("owner", sa.String(length=42), nullable=True),
        sa.Column("prev_owner", sa.String(length=42), nullable=True),
        sa.Column("locked", sa.Boolean(), nullable=False),
        sa.Column("l2_owner", sa.String(length=42), nullable=True),
        sa.Column("l2_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("last_event_block", sa.Integer(), nullable=False),
        sa.Column("last_event_log_index", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("hash_id"),
    )
    op.create_index("ix_ethscriptions_sha", "ethscriptions", ["sha"])
    op.create_index("ix_ethscriptions_token_id", "ethscriptions", ["token_id"])
    op.create_index("ix_ethscriptions_owner", "ethscriptions", ["owner"])

    op.create_table(
        "events",
        sa.Column("tx_id", sa.String(length=80), nullable=False),
        sa.Column("chain", chain_enum, nullable=False),
        sa.Column("kind", event_kind_enum, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("hash_id", sa.String(length=66), nullable=True),
        sa.Column("from_address", sa.String(length=42), nullable=True),
        sa.Column("to_address", sa.String(length=42), nullable=True),
        sa.Column("value", sa.String(length=78), nullable=True),
        sa.Column("tx_hash", sa.String(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("block_hash", sa.String(length=66), nullable=True),
        sa.Column("tx_index", sa.Integer(), nullable=True),
        sa.Column("block_timestamp", sa.DateTime(), nullable=True),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("tx_id"),
    )
    op.create_index("ix_events_chain", "events", ["chain"])
    op.create_index("ix_events_kind", "events", ["kind"])
    op.create_index("ix_events_hash_id", "events", ["hash_id"])
    op.create_index("ix_events_tx_hash", "events", ["tx_hash"])
    op.create_index("ix_events_block_number", "events", ["block_number"])

    op.create_table(
        "listings",
        sa.Column("chain", chain_enum, nullable=False),
        sa.Column("hash_id", sa.String(length=66), nullable=False),
        sa.Column("listed_by", sa.String(length=42), nullable=False),
        sa.Column("to_address", sa.String(length=42), nullable=True),
        sa.Column("min_value", sa.String(length=78), nullable=False),
        sa.Column("tx_hash", sa.String(length=66), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("chain", "hash_id"),
    )

    op.create_table(
        "bids",
        sa.Column("chain", chain_enum, nullable=False),
        sa.Column("hash_id", sa.String(length=66), nullable=False),
        sa.Column("from_address", sa.String(length=42), nullable=False),
        sa.Column("value", sa.String(length=78), nullable=False),
        sa.Column("tx_hash", sa.String(length=66), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("chain", "hash_id"),
    )

    op.create_table(
        "users",
        sa.Column("address", sa.String(length=42), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    op.create_table(
        "system_state",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Drop indexer tables."""
    op.drop_table("system_state")
    op.drop_table("users")
    op.drop_table("bids")
    op.drop_table("listings")
    op.drop_index("ix_events_block_number", table_name="events")
    op.drop_index("ix_events_tx_hash", table_name="events")
    op.drop_index("ix_events_hash_id", table_name="events")
    op.drop_index("ix_events_kind", table_name="events")
    op.drop_index("ix_events_chain", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_ethscriptions_owner", table_name="ethscriptions")
    op.drop_index("ix_ethscriptions_token_id", table_name="ethscriptions")
    op.drop_index("ix_ethscriptions_sha", table_name="ethscriptions")
    op.drop_table("ethscriptions")
    op.drop_index("ix_mint_jobs_status", table_name="mint_jobs")
    op.drop_index("ix_mint_jobs_hash_id", table_name="mint_jobs")
    op.drop_table("mint_jobs")
    op.drop_index("ix_block_jobs_status", table_name="block_jobs")
    op.drop_table("block_jobs")

    bind = op.get_bind()
    for enum in (mint_job_status_enum, block_job_status_enum, event_kind_enum, chain_enum):
        enum.drop(bind, checkfirst=True)
