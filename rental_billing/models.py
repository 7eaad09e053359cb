import datetime
import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class RentalPaymentEntry(Base):
    """Invoice or quotation for leased devices billed by meter-reading deltas"""
    __tablename__ = "rental_payment_entries"
    __table_args__ = (
        CheckConstraint(
            "invoice_type IN ('quotation', 'invoice')",
            name="ck_rental_payment_entries_invoice_type_allowed",
        ),
        CheckConstraint(
            "status IN ('unpaid', 'partially_paid', 'paid', 'cancelled')",
            name="ck_rental_payment_entries_status_allowed",
        ),
        Index("ix_rental_payment_entries_type_created_at", "invoice_type", "created_at"),
        Index("ix_rental_payment_entries_assignee_type", "assigned_to", "invoice_type"),
    )

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String, nullable=False, index=True)
    entry_kind = Column(String, nullable=False, default="single")
    invoice_type = Column(String, nullable=False, default="quotation")
    # Not unique: legacy snapshot numbering can issue duplicates under concurrency
    invoice_number = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="unpaid")
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    rental_id = Column(String, nullable=True, index=True)
    assigned_to = Column(String, nullable=True)
    send_details_to = Column(String, nullable=True)
    remarks = Column(Text, nullable=True)
    count_image = Column(JSON, nullable=True)  # {"public_id": ..., "url": ...}
    invoice_links = Column(JSON, nullable=False, default=list)

    # Payment details
    mode_of_payment = Column(String, nullable=True)
    bank_name = Column(String, nullable=True)
    transaction_details = Column(String, nullable=True)
    cheque_date = Column(Date, nullable=True)
    transfer_date = Column(Date, nullable=True)
    company_name_payment = Column(String, nullable=True)
    other_payment_mode = Column(String, nullable=True)

    entry_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    products = relationship(
        "RentalProductEntry",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="RentalProductEntry.position",
    )


class RentalProductEntry(Base):
    """One device's billing snapshot inside an entry"""
    __tablename__ = "rental_product_entries"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    entry_id = Column(String, ForeignKey("rental_payment_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String, nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    # Submitted readings per paper size
    a3_config = Column(JSON, nullable=True)
    a4_config = Column(JSON, nullable=True)
    a5_config = Column(JSON, nullable=True)

    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    gst_percentage = Column(Numeric(7, 3), nullable=False, default=0)
    commission_rate = Column(Numeric(7, 3), nullable=False, default=0)
    amount_with_tax = Column(Numeric(12, 2), nullable=False, default=0)
    commission_amount = Column(Numeric(12, 2), nullable=False, default=0)
    computed_total = Column(Numeric(12, 2), nullable=False, default=0)

    entry = relationship("RentalPaymentEntry", back_populates="products")


class GlobalCounter(Base):
    """Process-wide invoice sequence and numbering template (single row)"""
    __tablename__ = "global_counter"

    id = Column(Integer, primary_key=True, default=1)
    sequence_value = Column(Integer, nullable=False, default=0)
    format_template = Column(String, nullable=True)
    from_mail = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
