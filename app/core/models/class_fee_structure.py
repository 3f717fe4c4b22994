"""Class fee structure: default amount per fee component per class per academic year."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class ClassFeeStructure(Base):
    """Default fee amounts used to draft a student's ledger. One row per (class, academic year, component)."""

    __tablename__ = "class_fee_structures"
    __table_args__ = (
        UniqueConstraint(
            "class_id",
            "academic_year",
            "component",
            name="uq_class_fee_structure_class_year_component",
        ),
        CheckConstraint("amount >= 0", name="chk_class_fee_structure_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    academic_year = Column(String(9), nullable=False)  # e.g. "2025-2026"
    # One of FeeComponentName values (tuition_fee, exam_fee, ...)
    component = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass", foreign_keys=[class_id])
