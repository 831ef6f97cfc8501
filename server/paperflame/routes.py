"""
HTTP routes for the PaperFlame API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from paperflame.auth import (
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from paperflame.config import Settings, get_settings
from paperflame.db import DbClient, UserRecord
from paperflame.dependencies import get_db_client, get_queue_client, get_storage_client
from paperflame.errors import DuplicateRecordError, InvalidTransitionError
from paperflame.queue import JobQueue
from paperflame.schemas import (
    DashboardResponse,
    ExpenseCreate,
    ExpenseResponse,
    ExpenseUpdate,
    InvoiceCreate,
    InvoiceResponse,
    InvoiceUpdate,
    ListExpensesResponse,
    ListInvoicesResponse,
    ListSyncJobsResponse,
    LoginRequest,
    RegisterRequest,
    SignUrlResponse,
    SyncJobResponse,
    TokenResponse,
    UserResponse,
)
from paperflame.storage import StorageClient
from paperflame.sync import schedule_sync
from shared.types import InvoiceStatus, RecordType, SyncAction, SyncStatus

logger = logging.getLogger(__name__)

router = APIRouter()

# Optional columns that a PATCH may clear with an explicit null.
NULLABLE_FIELDS = frozenset({"vendor", "notes", "client_email"})


def _changes(payload) -> dict:
    return {
        k: v
        for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }


def _job_response(job) -> SyncJobResponse:
    return SyncJobResponse(**asdict(job))


@router.get("/health")
def health():
    return {"status": "ok"}


# Auth


@router.post(
    "/auth/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED
)
def register(
    payload: RegisterRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        user = db.create_user(
            payload.email, payload.name, hash_password(payload.password)
        )
    except DuplicateRecordError:
        raise HTTPException(status_code=409, detail="Email already registered")
    logger.info("Registered user %s", user.id)
    return TokenResponse(access_token=create_access_token(user.id, settings))


@router.post("/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    user = db.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=create_access_token(user.id, settings))


@router.get("/auth/me", response_model=UserResponse)
def me(user: UserRecord = Depends(get_current_user)):
    return UserResponse(**asdict(user))


# Expenses


@router.post(
    "/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED
)
def create_expense(
    payload: ExpenseCreate,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    expense = db.create_expense(user.id, **payload.model_dump())
    schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.EXPENSE, record_id=expense.id
    )
    return ExpenseResponse(**expense.as_dict())


@router.get("/expenses", response_model=ListExpensesResponse)
def list_expenses(
    category: Optional[str] = Query(None),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    expenses = db.list_expenses(
        user.id, category=category, year=year, limit=limit, offset=offset
    )
    return ListExpensesResponse(
        expenses=[ExpenseResponse(**e.as_dict()) for e in expenses]
    )


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    expense = db.get_expense(user.id, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return ExpenseResponse(**expense.as_dict())


@router.patch("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: str,
    payload: ExpenseUpdate,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    expense = db.update_expense(user.id, expense_id, _changes(payload))
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.EXPENSE, record_id=expense.id
    )
    return ExpenseResponse(**expense.as_dict())


@router.delete("/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    expense = db.delete_expense(user.id, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    if expense.export_path:
        schedule_sync(
            db,
            queue,
            user_id=user.id,
            record_type=RecordType.EXPENSE,
            record_id=expense.id,
            action=SyncAction.DELETE,
            storage_path=expense.export_path,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/expenses/{expense_id}/sync",
    response_model=SyncJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def resync_expense(
    expense_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    if not db.get_expense(user.id, expense_id):
        raise HTTPException(status_code=404, detail="Expense not found")
    job = schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.EXPENSE, record_id=expense_id
    )
    return _job_response(job)


# Invoices


@router.post(
    "/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED
)
def create_invoice(
    payload: InvoiceCreate,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    try:
        invoice = db.create_invoice(user.id, **payload.model_dump())
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.INVOICE, record_id=invoice.id
    )
    return InvoiceResponse(**invoice.as_dict())


@router.get("/invoices", response_model=ListInvoicesResponse)
def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    invoices = db.list_invoices(
        user.id, status=status_filter, year=year, limit=limit, offset=offset
    )
    return ListInvoicesResponse(
        invoices=[InvoiceResponse(**i.as_dict()) for i in invoices]
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    invoice = db.get_invoice(user.id, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return InvoiceResponse(**invoice.as_dict())


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdate,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    current = db.get_invoice(user.id, invoice_id)
    if not current:
        raise HTTPException(status_code=404, detail="Invoice not found")

    changes = _changes(payload)
    issue_date = changes.get("issue_date", current.issue_date)
    due_date = changes.get("due_date", current.due_date)
    if due_date < issue_date:
        raise HTTPException(
            status_code=422, detail="due_date must not be before issue_date"
        )
    try:
        invoice = db.update_invoice(user.id, invoice_id, changes)
    except (InvalidTransitionError, DuplicateRecordError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")

    schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.INVOICE, record_id=invoice.id
    )
    return InvoiceResponse(**invoice.as_dict())


@router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    invoice = db.delete_invoice(user.id, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    if invoice.export_path:
        schedule_sync(
            db,
            queue,
            user_id=user.id,
            record_type=RecordType.INVOICE,
            record_id=invoice.id,
            action=SyncAction.DELETE,
            storage_path=invoice.export_path,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/invoices/{invoice_id}/sync",
    response_model=SyncJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def resync_invoice(
    invoice_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    if not db.get_invoice(user.id, invoice_id):
        raise HTTPException(status_code=404, detail="Invoice not found")
    job = schedule_sync(
        db, queue, user_id=user.id, record_type=RecordType.INVOICE, record_id=invoice_id
    )
    return _job_response(job)


# Sync jobs and exports


@router.get("/sync-jobs", response_model=ListSyncJobsResponse)
def list_sync_jobs(
    status_filter: Optional[SyncStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    jobs = db.list_sync_jobs(user.id, status=status_filter, limit=limit)
    return ListSyncJobsResponse(jobs=[_job_response(job) for job in jobs])


@router.get("/sync-jobs/{job_id}", response_model=SyncJobResponse)
def get_sync_job(
    job_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    job = db.get_sync_job(job_id)
    if not job or job.user_id != user.id:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.get("/exports/{record_type}/{record_id}/url", response_model=SignUrlResponse)
def export_url(
    record_type: RecordType,
    record_id: str,
    expires_in: int = Query(3600, ge=60, le=86400),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    if record_type == RecordType.EXPENSE:
        record = db.get_expense(user.id, record_id)
    else:
        record = db.get_invoice(user.id, record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    if not record.export_path:
        raise HTTPException(status_code=404, detail="Record has not been backed up yet")
    if not storage.exists(record.export_path):
        logger.warning("Backup %s missing from storage", record.export_path)
        raise HTTPException(status_code=404, detail="Backup file is missing")
    url = storage.presign_get(record.export_path, expires_in=expires_in)
    return SignUrlResponse(path=record.export_path, url=url)


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    summary = db.summarize(user.id, year or date.today().year)
    return DashboardResponse(**asdict(summary))
