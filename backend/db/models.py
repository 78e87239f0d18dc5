"""
ShiftCount Database Models

Tables:
  Reference (owned by catalog administration, read here):
  1. stores              - Physical store locations (short code + active flag)
  2. products            - Master catalog; barcode is the ERP join key

  Counting lifecycle:
  3. count_lines         - One line per (store, product, shift, date)
  4. inventory_history   - Frozen copy of count_lines at submission
  5. inventory_reports   - One review-pending report per (store, date, shift)
  6. report_comments     - Reviewer/employee discussion on a report
  7. distribution_log    - Audit of distribute / reset / redistribute actions
  8. store_stock_levels  - Committed stock per (store, product) after approval

Actor identifiers (checked_by, submitted_by, ...) are opaque strings
supplied by the identity provider; there is no users table here.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


LINE_STATUSES = ("PENDING", "MATCHED", "MISSING", "OVER")
REPORT_STATUSES = ("PENDING", "APPROVED", "REJECTED")

# ─── 1. Stores ──────────────────────────────────────────────────────────────


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 2. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    barcode = Column(String(64), nullable=False, unique=True)
    sku = Column(String(100))
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    unit = Column(String(32))
    unit_price = Column(Float)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 3. Count Lines ─────────────────────────────────────────────────────────


class CountLine(Base):
    __tablename__ = "count_lines"

    line_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    shift = Column(Integer, nullable=False)
    check_date = Column(Date, nullable=False)
    expected_qty = Column(Integer, nullable=False, default=0)
    actual_qty = Column(Integer, nullable=True)  # NULL = not counted yet
    diff = Column(Integer, nullable=True)
    status = Column(String(10), nullable=False, default="PENDING")
    note = Column(Text)
    discrepancy_reason = Column(String(20))
    last_synced_at = Column(DateTime)
    checked_by = Column(String(64))
    checked_at = Column(DateTime)
    distributed_by = Column(String(64))
    distributed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", "shift", "check_date", name="uq_count_line_slot"),
        Index("ix_count_lines_slot", "store_id", "shift", "check_date"),
        CheckConstraint("shift BETWEEN 1 AND 3", name="ck_count_line_shift"),
        CheckConstraint("status IN ('PENDING', 'MATCHED', 'MISSING', 'OVER')", name="ck_count_line_status"),
    )

    store = relationship("Store")
    product = relationship("Product")


# ─── 4. Inventory History ───────────────────────────────────────────────────


class InventoryHistory(Base):
    __tablename__ = "inventory_history"

    history_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    check_date = Column(Date, nullable=False)
    shift = Column(Integer, nullable=False)
    expected_qty = Column(Integer, nullable=False, default=0)
    actual_qty = Column(Integer)
    diff = Column(Integer)
    status = Column(String(10), nullable=False, default="PENDING")
    note = Column(Text)
    discrepancy_reason = Column(String(20))
    checked_by = Column(String(64))
    submitted_by = Column(String(64))
    snapshot_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", "check_date", "shift", name="uq_history_slot_product"),
        Index("ix_history_slot", "store_id", "check_date", "shift"),
    )


# ─── 5. Inventory Reports ───────────────────────────────────────────────────


class InventoryReport(Base):
    __tablename__ = "inventory_reports"

    report_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    check_date = Column(Date, nullable=False)
    shift = Column(Integer, nullable=False)
    status = Column(String(10), nullable=False, default="PENDING")
    submitted_by = Column(String(64), nullable=False)
    submitted_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    reviewed_by = Column(String(64))
    reviewed_at = Column(DateTime)
    rejection_reason = Column(Text)
    stock_committed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "check_date", "shift", name="uq_report_slot"),
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_report_status"),
    )

    store = relationship("Store")


# ─── 6. Report Comments ─────────────────────────────────────────────────────


class ReportComment(Base):
    __tablename__ = "report_comments"

    comment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    report_id = Column(GUID(), ForeignKey("inventory_reports.report_id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(64), nullable=False)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_report_comments_report", "report_id"),)


# ─── 7. Distribution Log ────────────────────────────────────────────────────


class DistributionLog(Base):
    __tablename__ = "distribution_log"

    log_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    shift = Column(Integer, nullable=False)
    check_date = Column(Date, nullable=False)
    action = Column(String(20), nullable=False)  # DISTRIBUTE, REDISTRIBUTE, RESET, ADD_PRODUCTS
    product_count = Column(Integer, nullable=False, default=0)
    performed_by = Column(String(64))
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "action IN ('DISTRIBUTE', 'REDISTRIBUTE', 'RESET', 'ADD_PRODUCTS')",
            name="ck_distribution_action",
        ),
    )


# ─── 8. Store Stock Levels ──────────────────────────────────────────────────


class StoreStockLevel(Base):
    __tablename__ = "store_stock_levels"

    stock_level_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    source_report_id = Column(GUID())
    # Slot the quantity was counted in; an older slot never overwrites a newer one.
    as_of_date = Column(Date, nullable=False)
    as_of_shift = Column(Integer, nullable=False)
    committed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("store_id", "product_id", name="uq_stock_level_store_product"),)
