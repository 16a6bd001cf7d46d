"""Initial schema: directory, rides, wallet ledger and cancellation policies.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

from ridecore.domain.enums import (
    PaymentStatus,
    RefundStatus,
    RideStatus,
    TransactionStatus,
    TransactionType,
    VehicleClass,
)


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

Money = sa.Numeric(12, 2)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── passengers ────────────────────────────────────────────────────
    op.create_table(
        "passengers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("cancelled_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("penalties", Money, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("vehicle_class", sa.Enum(VehicleClass, name="vehicleclass")),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("total_earnings", Money, nullable=False, server_default="0"),
        sa.Column("completed_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("cancelled_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("cancellation_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("penalties", Money, nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_drivers_available", "drivers", ["is_available"])
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "passenger_id",
            sa.String(64),
            sa.ForeignKey("passengers.id"),
            nullable=False,
        ),
        sa.Column(
            "driver_id",
            sa.String(64),
            sa.ForeignKey("drivers.id"),
            nullable=True,
        ),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column(
            "destination_address", sa.String(255), nullable=False, server_default=""
        ),
        sa.Column("pickup_cell", sa.String(20), nullable=True),
        sa.Column(
            "vehicle_class",
            sa.Enum(VehicleClass, name="vehicleclass", create_type=False),
            nullable=False,
        ),
        sa.Column("status", sa.Enum(RideStatus, name="ridestatus"), nullable=False),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("pricing", sa.JSON, nullable=False),
        sa.Column("payment", sa.JSON, nullable=False),
        sa.Column("cancellation", sa.JSON, nullable=True),
        sa.Column("timestamps", sa.JSON, nullable=False),
        sa.Column("total_fare", Money, nullable=False),
        sa.Column(
            "payment_status",
            sa.Enum(PaymentStatus, name="paymentstatus"),
            nullable=False,
        ),
        sa.Column(
            "refund_status",
            sa.Enum(RefundStatus, name="refundstatus"),
            nullable=True,
        ),
        sa.Column("actual_distance_km", sa.Float, nullable=True),
        sa.Column("actual_duration_min", sa.Integer, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_passenger", "rides", ["passenger_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_payment_status", "rides", ["payment_status"])
    op.create_index("idx_rides_refund_status", "rides", ["refund_status"])
    op.create_index("idx_rides_cell", "rides", ["pickup_cell"])

    # ── wallets ───────────────────────────────────────────────────────
    op.create_table(
        "wallets",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZAR"),
        sa.Column("balance", Money, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        *_timestamps(),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("wallets.user_id"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column(
            "type",
            sa.Enum(TransactionType, name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount", Money, nullable=False),
        sa.Column("reference", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("balance_after", Money, nullable=False),
        sa.Column(
            "status",
            sa.Enum(TransactionStatus, name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "sequence", name="uq_wallet_txn_sequence"),
    )
    op.create_index(
        "idx_wallet_txn_reference", "wallet_transactions", ["user_id", "reference"]
    )

    # ── cancellation_policies ─────────────────────────────────────────
    op.create_table(
        "cancellation_policies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("version", sa.String(20), nullable=False),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("free_cancellation_window", sa.Float, nullable=False),
        sa.Column("rules", sa.JSON, nullable=False),
        sa.Column("no_show_penalty", sa.JSON, nullable=False),
        sa.Column("max_cancellation_fee", sa.Numeric(5, 2), nullable=False),
        sa.Column("auto_refund", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("name", "version", name="uq_policy_name_version"),
    )
    op.create_index("idx_policies_active", "cancellation_policies", ["is_active"])


def downgrade() -> None:
    op.drop_table("cancellation_policies")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("passengers")
    for enum_name in (
        "transactionstatus",
        "transactiontype",
        "refundstatus",
        "paymentstatus",
        "ridestatus",
        "vehicleclass",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
