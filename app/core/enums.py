from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"


class FeeComponentName(str, Enum):
    """Named fee structure components. Values are the column names on FeeLedger."""

    TUITION = "tuition_fee"
    ADMISSION = "admission_fee"
    EXAM = "exam_fee"
    LIBRARY = "library_fee"
    LAB = "lab_fee"
    TRANSPORT = "transport_fee"
    SPORTS = "sports_fee"
    DEVELOPMENT = "development_fee"
    MISCELLANEOUS = "miscellaneous_fee"


class FeeLedgerStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    waived = "waived"


class InstallmentStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"


class PaymentMethod(str, Enum):
    cash = "cash"
    cheque = "cheque"
    online = "online"
    bank_transfer = "bank_transfer"
    card = "card"


class AllocationStatus(str, Enum):
    not_requested = "not_requested"
    allocated = "allocated"
    installment_not_found = "installment_not_found"
