from typing import Optional


class ReconciliationError(Exception):
    """Base class for every failure raised by the reconciliation core."""


class MissingRequiredField(ReconciliationError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' is required.")


class DirectoryRequestFailed(ReconciliationError):
    """A request to the beneficiary directory failed (transport, status or decoding)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DirectoryTimeout(DirectoryRequestFailed):
    pass


class InvalidPayload(ReconciliationError):
    pass


class NotFound(ReconciliationError):
    def __init__(self, patient_id: int):
        self.patient_id = patient_id
        super().__init__(f"Patient with ID {patient_id} not found.")
