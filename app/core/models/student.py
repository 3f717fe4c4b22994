"""Student directory entry. The fee ledger only reads it (tenant check, class, display name)."""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (UniqueConstraint("tenant_id", "admission_number", name="uq_student_tenant_admission_number"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id"), nullable=True)
    # Login account of the student, when they have one
    user_id = Column(Uuid, nullable=True)
    admission_number = Column(String(50), nullable=False)
    full_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | LEFT
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass", foreign_keys=[class_id])
