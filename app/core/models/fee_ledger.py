"""Fee ledger: one billing record per student per academic year, with its installment plan and payment log.

total_amount, paid_amount, due_amount and status (ledger and installment) are derived.
Only app.api.v1.fees.computation.recompute writes them.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
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
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import FeeLedgerStatus, InstallmentStatus
from app.db.session import Base


class FeeLedger(Base):
    __tablename__ = "fee_ledgers"
    __table_args__ = (
        Index("ix_fee_ledger_tenant_student_year", "tenant_id", "student_id", "academic_year"),
        Index("ix_fee_ledger_tenant_status", "tenant_id", "status"),
        CheckConstraint(
            "scholarship_percentage >= 0 AND scholarship_percentage <= 100",
            name="chk_fee_ledger_scholarship_percentage",
        ),
        CheckConstraint(
            "status IN ('pending','partial','paid','overdue','waived')",
            name="chk_fee_ledger_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="RESTRICT"), nullable=False)
    academic_year = Column(String(9), nullable=False)  # YYYY-YYYY

    # Fee structure
    tuition_fee = Column(Numeric(12, 2), nullable=False)
    admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    exam_fee = Column(Numeric(12, 2), nullable=False, default=0)
    library_fee = Column(Numeric(12, 2), nullable=False, default=0)
    lab_fee = Column(Numeric(12, 2), nullable=False, default=0)
    transport_fee = Column(Numeric(12, 2), nullable=False, default=0)
    sports_fee = Column(Numeric(12, 2), nullable=False, default=0)
    development_fee = Column(Numeric(12, 2), nullable=False, default=0)
    miscellaneous_fee = Column(Numeric(12, 2), nullable=False, default=0)

    # Discounts
    scholarship_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    sibling_discount = Column(Numeric(12, 2), nullable=False, default=0)
    staff_ward_discount = Column(Numeric(12, 2), nullable=False, default=0)
    other_discount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)

    # Late fees; total_late_fee only grows (accrual sweep)
    total_late_fee = Column(Numeric(12, 2), nullable=False, default=0)
    late_fee_percentage = Column(Numeric(5, 2), nullable=False, default=5)
    grace_period_days = Column(Integer, nullable=False, default=7)

    # Derived
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=FeeLedgerStatus.pending.value)

    # Administrative waiver; cleared by the next structural edit
    is_waived = Column(Boolean, nullable=False, default=False)
    waived_by = Column(Uuid, nullable=True)
    waived_at = Column(DateTime(timezone=True), nullable=True)
    waiver_reason = Column(Text, nullable=True)

    remarks = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Uuid, nullable=True)
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    installments = relationship(
        "FeeInstallment",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="FeeInstallment.installment_number",
        lazy="selectin",
    )
    payments = relationship(
        "FeePayment",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="FeePayment.sequence",
        lazy="selectin",
    )
    student = relationship("Student", foreign_keys=[student_id])
    school_class = relationship("SchoolClass", foreign_keys=[class_id])

    # Optimistic concurrency: a concurrent writer that lost the row lock fails with StaleDataError
    __mapper_args__ = {"version_id_col": version_id}


class FeeInstallment(Base):
    """Scheduled portion of a ledger's total with its own settlement status."""

    __tablename__ = "fee_installments"
    __table_args__ = (
        UniqueConstraint("ledger_id", "installment_number", name="uq_fee_installment_ledger_number"),
        Index("ix_fee_installment_due_date", "due_date"),
        CheckConstraint(
            "status IN ('pending','partial','paid','overdue')",
            name="chk_fee_installment_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("fee_ledgers.id", ondelete="CASCADE"), nullable=False)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=InstallmentStatus.pending.value)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    late_fee = Column(Numeric(12, 2), nullable=False, default=0)
    last_accrual_date = Column(Date, nullable=True)
    payment_method = Column(String(20), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    receipt_number = Column(String(50), nullable=True)

    ledger = relationship("FeeLedger", back_populates="installments")


class FeePayment(Base):
    """Append-only payment log entry. Never updated or deleted."""

    __tablename__ = "fee_payments"
    __table_args__ = (
        UniqueConstraint("ledger_id", "receipt_number", name="uq_fee_payment_ledger_receipt"),
        UniqueConstraint("ledger_id", "sequence", name="uq_fee_payment_ledger_sequence"),
        CheckConstraint("amount > 0", name="chk_fee_payment_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    ledger_id = Column(Uuid, ForeignKey("fee_ledgers.id", ondelete="RESTRICT"), nullable=False)
    sequence = Column(Integer, nullable=False)  # 1-based position in the ledger's payment log
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    payment_method = Column(String(20), nullable=False)  # cash, cheque, online, bank_transfer, card
    transaction_id = Column(String(100), nullable=True)
    receipt_number = Column(String(50), nullable=False)
    collected_by = Column(Uuid, nullable=False)
    bank_name = Column(String(100), nullable=True)
    cheque_number = Column(String(50), nullable=True)
    cheque_date = Column(Date, nullable=True)
    remarks = Column(Text, nullable=True)
    installment_number = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    ledger = relationship("FeeLedger", back_populates="payments")
