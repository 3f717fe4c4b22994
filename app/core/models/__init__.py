from app.core.models.tenant import Tenant
from app.core.models.class_model import SchoolClass
from app.core.models.student import Student
from app.core.models.class_fee_structure import ClassFeeStructure
from app.core.models.fee_ledger import FeeInstallment, FeeLedger, FeePayment
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Tenant",
    "SchoolClass",
    "Student",
    "ClassFeeStructure",
    "FeeLedger",
    "FeeInstallment",
    "FeePayment",
    "FeeAuditLog",
]
