"""Service-layer errors. Each carries a stable `kind` and the HTTP status the routers map it to."""

from typing import Dict

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind = "ServiceError"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_detail(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ServiceError):
    """Malformed or missing field, bad enum value, bad amount."""

    kind = "ValidationError"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class ReferenceNotFound(ServiceError):
    """Dangling student, class or school reference (including references into another school)."""

    kind = "ReferenceNotFound"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotAuthorized(ServiceError):
    kind = "NotAuthorized"

    def __init__(self, message: str = "Not authorized to access this record") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class Conflict(ServiceError):
    kind = "Conflict"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class NotFound(ServiceError):
    kind = "NotFound"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


# --- Fee ledger specific ---
class InvalidAmount(ValidationError):
    def __init__(self, message: str = "Amount must be greater than 0") -> None:
        super().__init__(message)


class LedgerNotFound(NotFound):
    def __init__(self, message: str = "Fee ledger not found") -> None:
        super().__init__(message)


class InstallmentNotFound(NotFound):
    def __init__(self, installment_number: int) -> None:
        super().__init__(f"Installment {installment_number} does not exist on this ledger")
        self.installment_number = installment_number


class DuplicateReceipt(Conflict):
    def __init__(self, receipt_number: str) -> None:
        super().__init__(f"Receipt number already used on this ledger: {receipt_number}")
        self.receipt_number = receipt_number


class InvalidScheduleRequest(ValidationError):
    pass


class ScheduleConflict(Conflict, InvalidScheduleRequest):
    """Rescheduling a plan that already has payments allocated against it."""

    kind = "Conflict"

    def __init__(self, message: str) -> None:
        ServiceError.__init__(self, message, status.HTTP_409_CONFLICT)
