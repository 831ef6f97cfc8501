from enum import StrEnum


class InvoiceStatus(StrEnum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class SyncStatus(StrEnum):
    WAITING = "WAITING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


class RecordType(StrEnum):
    EXPENSE = "expense"
    INVOICE = "invoice"


class SyncAction(StrEnum):
    EXPORT = "export"
    DELETE = "delete"
