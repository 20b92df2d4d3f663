"""initial cleannft schema

Revision ID: 1f4e2a7c9b30
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "1f4e2a7c9b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, table_name: str) -> bool:
    insp = sa.inspect(bind)
    return table_name in insp.get_table_names()


def _created_at():
    return sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True)


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("display_name", sa.String(length=100), nullable=True),
            sa.Column("wallet_address", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )

    if not _table_exists(bind, "user_roles"):
        op.create_table(
            "user_roles",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("role_code", sa.String(length=20), nullable=False),
            _created_at(),
            sa.UniqueConstraint("user_id", "role_code", name="uq_user_roles_user_role"),
        )

    if not _table_exists(bind, "auth_sessions"):
        op.create_table(
            "auth_sessions",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("expires_at", sa.TIMESTAMP(), nullable=False),
            _created_at(),
        )
        op.create_index("ix_auth_sessions_expires_at", "auth_sessions", ["expires_at"])

    if not _table_exists(bind, "recycling_stations"):
        op.create_table(
            "recycling_stations",
            sa.Column("code", sa.String(length=50), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("location", sa.String(length=500), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            _created_at(),
        )

    if not _table_exists(bind, "devices"):
        op.create_table(
            "devices",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("hw_id", sa.String(length=100), nullable=False, unique=True),
            sa.Column("station_code", sa.String(length=50), sa.ForeignKey("recycling_stations.code"), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("metadata", sa.JSON(), nullable=True),
            _created_at(),
        )

    if not _table_exists(bind, "waste_events"):
        op.create_table(
            "waste_events",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("station_code", sa.String(length=50), sa.ForeignKey("recycling_stations.code"), nullable=True),
            sa.Column("device_id", UUID(as_uuid=True), sa.ForeignKey("devices.id"), nullable=True),
            sa.Column("occurred_at", sa.TIMESTAMP(), nullable=False),
            sa.Column("material_type", sa.String(length=100), nullable=False),
            sa.Column("weight_grams", sa.Numeric(12, 2), nullable=False),
            sa.Column("source", sa.String(length=10), nullable=False),
            sa.Column("raw_payload", sa.JSON(), nullable=False),
            sa.Column("idempotency_key", sa.String(length=32), nullable=True),
            _created_at(),
            sa.UniqueConstraint("device_id", "idempotency_key", name="uq_waste_events_device_idempotency_key"),
        )
        op.create_index("ix_waste_events_user_id", "waste_events", ["user_id"])
        op.create_index("ix_waste_events_station_code", "waste_events", ["station_code"])

    if not _table_exists(bind, "point_rules"):
        op.create_table(
            "point_rules",
            sa.Column("code", sa.String(length=50), primary_key=True, nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("points_expr", sa.JSON(), nullable=False),
            sa.Column("active_from", sa.TIMESTAMP(), nullable=False),
            sa.Column("active_to", sa.TIMESTAMP(), nullable=True),
            _created_at(),
        )

    if not _table_exists(bind, "point_ledger"):
        op.create_table(
            "point_ledger",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("ref_table", sa.String(length=50), nullable=False),
            sa.Column("ref_id", sa.String(length=100), nullable=False),
            sa.Column("delta_points", sa.Integer(), nullable=False),
            sa.Column("reason_code", sa.String(length=50), nullable=False),
            sa.Column("occurred_at", sa.TIMESTAMP(), nullable=False),
            _created_at(),
            sa.UniqueConstraint("ref_table", "ref_id", "reason_code", name="uq_point_ledger_ref_reason"),
        )
        op.create_index("ix_point_ledger_user_id", "point_ledger", ["user_id"])

    if not _table_exists(bind, "point_balances"):
        op.create_table(
            "point_balances",
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, nullable=False),
            sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not _table_exists(bind, "outbox_events"):
        op.create_table(
            "outbox_events",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("event_type", sa.String(length=30), nullable=False),
            sa.Column("aggregate", sa.String(length=50), nullable=False),
            sa.Column("aggregate_id", sa.String(length=100), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            _created_at(),
            sa.Column("processed_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("locked_by", sa.String(length=100), nullable=True),
        )
        op.create_index("ix_outbox_events_pending", "outbox_events", ["processed_at", "created_at"])

    if not _table_exists(bind, "blockchain_txs"):
        op.create_table(
            "blockchain_txs",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("related_table", sa.String(length=50), nullable=False),
            sa.Column("related_id", sa.String(length=100), nullable=False),
            sa.Column("network", sa.String(length=50), nullable=False),
            sa.Column("tx_hash", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="SUBMITTED"),
            sa.Column("outbox_event_id", UUID(as_uuid=True), sa.ForeignKey("outbox_events.id"), nullable=True),
            sa.Column("submitted_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("confirmed_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("error", sa.String(length=2000), nullable=True),
        )

    if not _table_exists(bind, "nft_definitions"):
        op.create_table(
            "nft_definitions",
            sa.Column("code", sa.String(length=50), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("image_ipfs_cid", sa.String(length=100), nullable=True),
            sa.Column("metadata_ipfs_cid", sa.String(length=100), nullable=True),
            sa.Column("attributes", sa.JSON(), nullable=False),
            sa.Column("supply_cap", sa.Integer(), nullable=True),
            sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not _table_exists(bind, "nft_mints"):
        op.create_table(
            "nft_mints",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("nft_def_code", sa.String(length=50), sa.ForeignKey("nft_definitions.code"), nullable=False),
            sa.Column("token_id", sa.BigInteger(), nullable=False),
            sa.Column("contract", sa.String(length=100), nullable=False),
            sa.Column("network", sa.String(length=50), nullable=False),
            sa.Column("owner_address", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="MINTED"),
            sa.Column("allocated_to_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("allocated_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("minted_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint("nft_def_code", "token_id", name="uq_nft_mints_def_token"),
        )

    if not _table_exists(bind, "nft_claims"):
        op.create_table(
            "nft_claims",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("nft_mint_id", UUID(as_uuid=True), sa.ForeignKey("nft_mints.id"), nullable=False),
            sa.Column("claim_type", sa.String(length=50), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("claimed_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint("user_id", "nft_mint_id", name="uq_nft_claims_user_mint"),
        )

    if not _table_exists(bind, "admin_actions"):
        op.create_table(
            "admin_actions",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("admin_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_table", sa.String(length=50), nullable=True),
            sa.Column("target_id", sa.String(length=100), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("occurred_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )


def downgrade() -> None:
    bind = op.get_bind()

    for table_name in (
        "admin_actions",
        "nft_claims",
        "nft_mints",
        "nft_definitions",
        "blockchain_txs",
        "outbox_events",
        "point_balances",
        "point_ledger",
        "point_rules",
        "waste_events",
        "devices",
        "recycling_stations",
        "auth_sessions",
        "user_roles",
        "users",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
