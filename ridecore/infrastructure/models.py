"""
SQLAlchemy ORM models  (maps to PostgreSQL; SQLite in tests).

Tables
------
* ``passengers``             -- registered passengers (directory)
* ``drivers``                -- drivers with availability and counters
* ``rides``                  -- ride aggregates; sub-records in JSON columns
* ``wallets``                -- one balance per user
* ``wallet_transactions``    -- append-only ledger entries
* ``cancellation_policies``  -- versioned policy documents, one active

Indexes
-------
* **B-Tree** on ``rides.status``, ``payment_status``, ``refund_status`` and
  ``pickup_cell`` for the reconciler and the demand look-ups.
* Unique ``rides.idempotency_key`` so a retried request cannot double-book.
* Unique ``(user_id, sequence)`` on ``wallet_transactions`` so two writers
  cannot both append the same ledger position.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)

from .database import Base
from ridecore.domain.enums import (
    PaymentStatus,
    RefundStatus,
    RideStatus,
    TransactionStatus,
    TransactionType,
    VehicleClass,
)

Money = Numeric(12, 2)


class PassengerModel(Base):
    __tablename__ = "passengers"

    id = Column(String(64), primary_key=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    cancelled_rides = Column(Integer, default=0, nullable=False)
    penalties = Column(Money, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True)
    name = Column(String(120), nullable=False)
    vehicle_class = Column(Enum(VehicleClass), default=VehicleClass.STANDARD)
    is_available = Column(Boolean, default=True, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)

    total_earnings = Column(Money, default=0, nullable=False)
    completed_rides = Column(Integer, default=0, nullable=False)
    cancelled_rides = Column(Integer, default=0, nullable=False)
    cancellation_rate = Column(Float, default=0.0, nullable=False)
    penalties = Column(Money, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_available", "is_available"),
        Index("idx_drivers_cell", "h3_cell"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(32), primary_key=True)
    passenger_id = Column(String(64), ForeignKey("passengers.id"), nullable=False)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(255), default="", nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), default="", nullable=False)
    pickup_cell = Column(String(20), nullable=True)

    vehicle_class = Column(Enum(VehicleClass), nullable=False)
    status = Column(Enum(RideStatus), default=RideStatus.PENDING, nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    # Sub-records, serialized by ``mappers``
    pricing = Column(JSON, nullable=False)
    payment = Column(JSON, nullable=False)
    cancellation = Column(JSON, nullable=True)
    timestamps = Column(JSON, nullable=False)

    # Denormalized for queries
    total_fare = Column(Money, nullable=False)
    payment_status = Column(Enum(PaymentStatus), nullable=False)
    refund_status = Column(Enum(RefundStatus), nullable=True)
    settlement_attempts = Column(Integer, default=0, nullable=False)
    refund_attempts = Column(Integer, default=0, nullable=False)

    actual_distance_km = Column(Float, nullable=True)
    actual_duration_min = Column(Integer, nullable=True)
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_passenger", "passenger_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_payment_status", "payment_status"),
        Index("idx_rides_refund_status", "refund_status"),
        Index("idx_rides_cell", "pickup_cell"),
    )


class WalletModel(Base):
    __tablename__ = "wallets"

    user_id = Column(String(64), primary_key=True)
    currency = Column(String(3), default="ZAR", nullable=False)
    balance = Column(Money, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )


class WalletTransactionModel(Base):
    __tablename__ = "wallet_transactions"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(64), ForeignKey("wallets.user_id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Money, nullable=False)  # signed
    reference = Column(String(100), nullable=False)
    description = Column(String(255), default="", nullable=False)
    balance_after = Column(Money, nullable=False)
    status = Column(
        Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_wallet_txn_sequence"),
        Index("idx_wallet_txn_reference", "user_id", "reference"),
    )


class CancellationPolicyModel(Base):
    __tablename__ = "cancellation_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    version = Column(String(20), nullable=False)
    description = Column(String(500), default="", nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    free_cancellation_window = Column(Float, default=2, nullable=False)
    rules = Column(JSON, nullable=False)
    no_show_penalty = Column(JSON, nullable=False)
    max_cancellation_fee = Column(Numeric(5, 2), default=50, nullable=False)
    auto_refund = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_policies_active", "is_active"),
        UniqueConstraint("name", "version", name="uq_policy_name_version"),
    )
