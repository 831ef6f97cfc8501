"""
Pydantic schemas for the PaperFlame API.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from shared.types import InvoiceStatus, RecordType, SyncAction, SyncStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
CURRENCY_PATTERN = r"^[A-Za-z]{3}$"


def _upper(value: Optional[str]) -> Optional[str]:
    return value.upper() if value else value


# Auth


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8, max_length=256)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)


class TokenResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    created_at: float


# Expenses


class ExpenseCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field("USD", pattern=CURRENCY_PATTERN)
    category: str = Field(..., min_length=1, max_length=100)
    incurred_on: date
    vendor: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)

    normalize_currency = field_validator("currency")(_upper)


class ExpenseUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    incurred_on: Optional[date] = None
    vendor: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)

    normalize_currency = field_validator("currency")(_upper)


class ExpenseResponse(BaseModel):
    id: str
    description: str
    amount: Decimal
    currency: str
    category: str
    incurred_on: date
    vendor: Optional[str] = None
    notes: Optional[str] = None
    is_synced: bool
    export_path: Optional[str] = None
    synced_at: Optional[float] = None
    created_at: float
    updated_at: float


class ListExpensesResponse(BaseModel):
    expenses: list[ExpenseResponse]


# Invoices


class InvoiceCreate(BaseModel):
    number: str = Field(..., min_length=1, max_length=64)
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: Optional[str] = Field(None, max_length=320, pattern=EMAIL_PATTERN)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field("USD", pattern=CURRENCY_PATTERN)
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = Field(None, max_length=2000)

    normalize_currency = field_validator("currency")(_upper)

    @model_validator(mode="after")
    def _due_after_issue(self):
        if self.due_date < self.issue_date:
            raise ValueError("due_date must not be before issue_date")
        return self


class InvoiceUpdate(BaseModel):
    number: Optional[str] = Field(None, min_length=1, max_length=64)
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    client_email: Optional[str] = Field(None, max_length=320, pattern=EMAIL_PATTERN)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = Field(None, max_length=2000)

    normalize_currency = field_validator("currency")(_upper)


class InvoiceResponse(BaseModel):
    id: str
    number: str
    client_name: str
    client_email: Optional[str] = None
    amount: Decimal
    currency: str
    issue_date: date
    due_date: date
    status: InvoiceStatus
    notes: Optional[str] = None
    is_synced: bool
    export_path: Optional[str] = None
    synced_at: Optional[float] = None
    created_at: float
    updated_at: float


class ListInvoicesResponse(BaseModel):
    invoices: list[InvoiceResponse]


# Sync jobs and exports


class SyncJobResponse(BaseModel):
    job_id: str
    record_type: RecordType
    record_id: str
    action: SyncAction
    status: SyncStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: float
    updated_at: float


class ListSyncJobsResponse(BaseModel):
    jobs: list[SyncJobResponse]


class SignUrlResponse(BaseModel):
    path: str
    url: str


class DashboardResponse(BaseModel):
    year: int
    expense_total: Decimal
    expenses_by_category: dict[str, Decimal]
    invoice_totals_by_status: dict[str, Decimal]
    invoice_counts_by_status: dict[str, int]
    outstanding_total: Decimal
    unsynced_records: int
