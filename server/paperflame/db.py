"""
Database abstraction for Postgres and an in-memory test implementation.

Every user-facing operation is scoped by ``user_id``: a row owned by another
tenant behaves exactly like a missing row.
"""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional, Protocol, Union

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from paperflame.errors import DuplicateRecordError
from paperflame.lifecycle import OUTSTANDING_STATUSES, check_editable, check_transition
from shared.types import InvoiceStatus, RecordType, SyncAction, SyncStatus

EXPENSE_FIELDS = frozenset(
    {"description", "amount", "currency", "category", "incurred_on", "vendor", "notes"}
)
INVOICE_FIELDS = frozenset(
    {
        "number",
        "client_name",
        "client_email",
        "amount",
        "currency",
        "issue_date",
        "due_date",
        "status",
        "notes",
    }
)


@dataclass
class UserRecord:
    id: str
    email: str
    name: str
    password_hash: str
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class ExpenseRecord:
    id: str
    user_id: str
    description: str
    amount: Decimal
    currency: str
    category: str
    incurred_on: date
    vendor: Optional[str] = None
    notes: Optional[str] = None
    is_synced: bool = False
    export_path: Optional[str] = None
    synced_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class InvoiceRecord:
    id: str
    user_id: str
    number: str
    client_name: str
    amount: Decimal
    currency: str
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    client_email: Optional[str] = None
    notes: Optional[str] = None
    is_synced: bool = False
    export_path: Optional[str] = None
    synced_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


SyncableRecord = Union[ExpenseRecord, InvoiceRecord]


@dataclass
class SyncJobRecord:
    job_id: str
    user_id: str
    record_type: RecordType
    record_id: str
    action: SyncAction
    status: SyncStatus
    attempts: int = 0
    last_error: Optional[str] = None
    storage_path: Optional[str] = None
    locked_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "record_type": self.record_type.value,
            "record_id": self.record_id,
            "action": self.action.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class DashboardSummary:
    year: int
    expense_total: Decimal = Decimal("0")
    expenses_by_category: Dict[str, Decimal] = field(default_factory=dict)
    invoice_totals_by_status: Dict[str, Decimal] = field(default_factory=dict)
    invoice_counts_by_status: Dict[str, int] = field(default_factory=dict)
    outstanding_total: Decimal = Decimal("0")
    unsynced_records: int = 0


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, email: str, name: str, password_hash: str) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def create_expense(self, user_id: str, **fields) -> ExpenseRecord:
        ...

    def get_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        ...

    def list_expenses(
        self,
        user_id: str,
        *,
        category: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        ...

    def update_expense(
        self, user_id: str, expense_id: str, changes: dict
    ) -> Optional[ExpenseRecord]:
        ...

    def delete_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        ...

    def create_invoice(self, user_id: str, **fields) -> InvoiceRecord:
        ...

    def get_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        ...

    def list_invoices(
        self,
        user_id: str,
        *,
        status: Optional[InvoiceStatus] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InvoiceRecord]:
        ...

    def update_invoice(
        self, user_id: str, invoice_id: str, changes: dict
    ) -> Optional[InvoiceRecord]:
        ...

    def delete_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        ...

    def mark_overdue_invoices(self, today: date) -> list[InvoiceRecord]:
        ...

    def get_record(
        self, record_type: RecordType, record_id: str
    ) -> Optional[SyncableRecord]:
        ...

    def mark_record_synced(
        self,
        record_type: RecordType,
        record_id: str,
        *,
        export_path: str,
        source_updated_at: float,
    ) -> bool:
        ...

    def find_waiting_sync_job(
        self, record_type: RecordType, record_id: str, action: SyncAction
    ) -> Optional[SyncJobRecord]:
        ...

    def create_sync_job(
        self,
        user_id: str,
        record_type: RecordType,
        record_id: str,
        action: SyncAction,
        storage_path: Optional[str] = None,
    ) -> SyncJobRecord:
        ...

    def get_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        ...

    def list_sync_jobs(
        self, user_id: str, *, status: Optional[SyncStatus] = None, limit: int = 50
    ) -> list[SyncJobRecord]:
        ...

    def claim_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        ...

    def claim_next_waiting_job(self) -> Optional[SyncJobRecord]:
        ...

    def update_sync_job(
        self,
        job_id: str,
        *,
        status: SyncStatus,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        ...

    def requeue_stale_locks(self, lock_timeout_seconds: float = 900) -> int:
        ...

    def list_unsynced(self, limit: int = 500) -> list[SyncableRecord]:
        ...

    def summarize(self, user_id: str, year: int) -> DashboardSummary:
        ...


def _in_year(value: date, year: Optional[int]) -> bool:
    return year is None or value.year == year


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def _pick(changes: dict, allowed: Iterable[str]) -> dict:
    return {k: v for k, v in changes.items() if k in allowed}


def _check_invoice_change(current: InvoiceStatus, changes: dict) -> None:
    """Raise InvalidTransitionError unless the lifecycle allows ``changes``."""
    check_editable(current, changes)
    if "status" in changes:
        check_transition(current, InvoiceStatus(changes["status"]))


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.expenses: Dict[str, ExpenseRecord] = {}
        self.invoices: Dict[str, InvoiceRecord] = {}
        self.jobs: Dict[str, SyncJobRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.expenses.clear()
        self.invoices.clear()
        self.jobs.clear()

    # Users

    def create_user(self, email: str, name: str, password_hash: str) -> UserRecord:
        email = email.lower()
        if self.get_user_by_email(email):
            raise DuplicateRecordError(f"Email already registered: {email}")
        user = UserRecord(
            id=uuid.uuid4().hex, email=email, name=name, password_hash=password_hash
        )
        self.users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.lower()
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    # Expenses

    def create_expense(self, user_id: str, **fields) -> ExpenseRecord:
        expense = ExpenseRecord(
            id=uuid.uuid4().hex, user_id=user_id, **_pick(fields, EXPENSE_FIELDS)
        )
        self.expenses[expense.id] = expense
        return expense

    def get_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        expense = self.expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense

    def list_expenses(
        self,
        user_id: str,
        *,
        category: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        items = [
            e
            for e in self.expenses.values()
            if e.user_id == user_id
            and (category is None or e.category == category)
            and _in_year(e.incurred_on, year)
        ]
        items.sort(key=lambda e: (e.incurred_on, e.created_at), reverse=True)
        return items[offset : offset + limit]

    def update_expense(
        self, user_id: str, expense_id: str, changes: dict
    ) -> Optional[ExpenseRecord]:
        expense = self.get_expense(user_id, expense_id)
        if expense is None:
            return None
        for key, value in _pick(changes, EXPENSE_FIELDS).items():
            setattr(expense, key, value)
        expense.is_synced = False
        expense.updated_at = time.time()
        return expense

    def delete_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        expense = self.get_expense(user_id, expense_id)
        if expense is None:
            return None
        return self.expenses.pop(expense_id)

    # Invoices

    def _check_invoice_number(
        self, user_id: str, number: str, invoice_id: Optional[str] = None
    ) -> None:
        for invoice in self.invoices.values():
            if (
                invoice.user_id == user_id
                and invoice.number == number
                and invoice.id != invoice_id
            ):
                raise DuplicateRecordError(f"Invoice number already used: {number}")

    def create_invoice(self, user_id: str, **fields) -> InvoiceRecord:
        fields = _pick(fields, INVOICE_FIELDS)
        self._check_invoice_number(user_id, fields["number"])
        invoice = InvoiceRecord(id=uuid.uuid4().hex, user_id=user_id, **fields)
        self.invoices[invoice.id] = invoice
        return invoice

    def get_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        invoice = self.invoices.get(invoice_id)
        if invoice is None or invoice.user_id != user_id:
            return None
        return invoice

    def list_invoices(
        self,
        user_id: str,
        *,
        status: Optional[InvoiceStatus] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InvoiceRecord]:
        items = [
            i
            for i in self.invoices.values()
            if i.user_id == user_id
            and (status is None or i.status == status)
            and _in_year(i.issue_date, year)
        ]
        items.sort(key=lambda i: (i.issue_date, i.created_at), reverse=True)
        return items[offset : offset + limit]

    def update_invoice(
        self, user_id: str, invoice_id: str, changes: dict
    ) -> Optional[InvoiceRecord]:
        invoice = self.get_invoice(user_id, invoice_id)
        if invoice is None:
            return None
        changes = _pick(changes, INVOICE_FIELDS)
        _check_invoice_change(invoice.status, changes)
        if "number" in changes:
            self._check_invoice_number(user_id, changes["number"], invoice_id)
        for key, value in changes.items():
            setattr(invoice, key, value)
        invoice.is_synced = False
        invoice.updated_at = time.time()
        return invoice

    def delete_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        invoice = self.get_invoice(user_id, invoice_id)
        if invoice is None:
            return None
        return self.invoices.pop(invoice_id)

    def mark_overdue_invoices(self, today: date) -> list[InvoiceRecord]:
        now = time.time()
        updated = []
        for invoice in self.invoices.values():
            if invoice.status == InvoiceStatus.SENT and invoice.due_date < today:
                invoice.status = InvoiceStatus.OVERDUE
                invoice.is_synced = False
                invoice.updated_at = now
                updated.append(invoice)
        return updated

    # Sync flags

    def get_record(
        self, record_type: RecordType, record_id: str
    ) -> Optional[SyncableRecord]:
        if record_type == RecordType.EXPENSE:
            return self.expenses.get(record_id)
        return self.invoices.get(record_id)

    def mark_record_synced(
        self,
        record_type: RecordType,
        record_id: str,
        *,
        export_path: str,
        source_updated_at: float,
    ) -> bool:
        record = self.get_record(record_type, record_id)
        if record is None or record.updated_at != source_updated_at:
            return False
        record.is_synced = True
        record.export_path = export_path
        record.synced_at = time.time()
        return True

    # Sync jobs

    def find_waiting_sync_job(
        self, record_type: RecordType, record_id: str, action: SyncAction
    ) -> Optional[SyncJobRecord]:
        for job in self.jobs.values():
            if (
                job.status == SyncStatus.WAITING
                and job.record_type == record_type
                and job.record_id == record_id
                and job.action == action
            ):
                return job
        return None

    def create_sync_job(
        self,
        user_id: str,
        record_type: RecordType,
        record_id: str,
        action: SyncAction,
        storage_path: Optional[str] = None,
    ) -> SyncJobRecord:
        existing = self.find_waiting_sync_job(record_type, record_id, action)
        if existing:
            return existing
        job = SyncJobRecord(
            job_id=uuid.uuid4().hex,
            user_id=user_id,
            record_type=record_type,
            record_id=record_id,
            action=action,
            status=SyncStatus.WAITING,
            storage_path=storage_path,
        )
        self.jobs[job.job_id] = job
        return job

    def get_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        return self.jobs.get(job_id)

    def list_sync_jobs(
        self, user_id: str, *, status: Optional[SyncStatus] = None, limit: int = 50
    ) -> list[SyncJobRecord]:
        items = [
            j
            for j in self.jobs.values()
            if j.user_id == user_id and (status is None or j.status == status)
        ]
        items.sort(key=lambda j: j.created_at, reverse=True)
        return items[:limit]

    def claim_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        job = self.jobs.get(job_id)
        if job is None or job.status != SyncStatus.WAITING:
            return None
        job.status = SyncStatus.RUNNING
        job.locked_at = time.time()
        job.updated_at = job.locked_at
        return job

    def claim_next_waiting_job(self) -> Optional[SyncJobRecord]:
        waiting = [j for j in self.jobs.values() if j.status == SyncStatus.WAITING]
        if not waiting:
            return None
        oldest = min(waiting, key=lambda j: j.created_at)
        return self.claim_sync_job(oldest.job_id)

    def update_sync_job(
        self,
        job_id: str,
        *,
        status: SyncStatus,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        job.status = status
        job.last_error = last_error
        if attempts is not None:
            job.attempts = attempts
        if status != SyncStatus.RUNNING:
            job.locked_at = None
        job.updated_at = time.time()

    def requeue_stale_locks(self, lock_timeout_seconds: float = 900) -> int:
        now = time.time()
        requeued = 0
        for job in self.jobs.values():
            if (
                job.status == SyncStatus.RUNNING
                and job.locked_at
                and now - job.locked_at > lock_timeout_seconds
            ):
                job.status = SyncStatus.WAITING
                job.locked_at = None
                job.updated_at = now
                requeued += 1
        return requeued

    def list_unsynced(self, limit: int = 500) -> list[SyncableRecord]:
        records = [
            r
            for r in [*self.expenses.values(), *self.invoices.values()]
            if not r.is_synced
        ]
        records.sort(key=lambda r: r.updated_at)
        return records[:limit]

    # Dashboard

    def summarize(self, user_id: str, year: int) -> DashboardSummary:
        summary = DashboardSummary(year=year)
        by_category: Dict[str, Decimal] = defaultdict(Decimal)
        for expense in self.list_expenses(user_id, year=year, limit=len(self.expenses)):
            by_category[expense.category] += expense.amount
            summary.expense_total += expense.amount
        summary.expenses_by_category = dict(by_category)

        totals: Dict[str, Decimal] = defaultdict(Decimal)
        counts: Dict[str, int] = defaultdict(int)
        for invoice in self.list_invoices(user_id, year=year, limit=len(self.invoices)):
            totals[invoice.status.value] += invoice.amount
            counts[invoice.status.value] += 1
            if invoice.status in OUTSTANDING_STATUSES:
                summary.outstanding_total += invoice.amount
        summary.invoice_totals_by_status = dict(totals)
        summary.invoice_counts_by_status = dict(counts)

        summary.unsynced_records = sum(
            1
            for record in [*self.expenses.values(), *self.invoices.values()]
            if record.user_id == user_id and not record.is_synced
        )
        return summary


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Row conversion

    @staticmethod
    def _to_user(row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            name=row.name,
            password_hash=row.password_hash,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_expense(row: "ExpenseRow") -> ExpenseRecord:
        return ExpenseRecord(
            id=row.id,
            user_id=row.user_id,
            description=row.description,
            amount=Decimal(row.amount),
            currency=row.currency,
            category=row.category,
            incurred_on=row.incurred_on,
            vendor=row.vendor,
            notes=row.notes,
            is_synced=row.is_synced,
            export_path=row.export_path,
            synced_at=row.synced_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_invoice(row: "InvoiceRow") -> InvoiceRecord:
        return InvoiceRecord(
            id=row.id,
            user_id=row.user_id,
            number=row.number,
            client_name=row.client_name,
            client_email=row.client_email,
            amount=Decimal(row.amount),
            currency=row.currency,
            issue_date=row.issue_date,
            due_date=row.due_date,
            status=InvoiceStatus(row.status),
            notes=row.notes,
            is_synced=row.is_synced,
            export_path=row.export_path,
            synced_at=row.synced_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_job(row: "SyncJobRow") -> SyncJobRecord:
        return SyncJobRecord(
            job_id=row.job_id,
            user_id=row.user_id,
            record_type=RecordType(row.record_type),
            record_id=row.record_id,
            action=SyncAction(row.action),
            status=SyncStatus(row.status),
            attempts=row.attempts,
            last_error=row.last_error,
            storage_path=row.storage_path,
            locked_at=row.locked_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _commit(self, session: Session, message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateRecordError(message) from exc

    @staticmethod
    def _owned(session: Session, row_cls, user_id: str, record_id: str):
        row = session.get(row_cls, record_id)
        if row is None or row.user_id != user_id:
            return None
        return row

    # Users

    def create_user(self, email: str, name: str, password_hash: str) -> UserRecord:
        email = email.lower()
        with self.Session() as session:
            row = UserRow(
                id=uuid.uuid4().hex,
                email=email,
                name=name,
                password_hash=password_hash,
                created_at=time.time(),
            )
            session.add(row)
            self._commit(session, f"Email already registered: {email}")
            return self._to_user(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.email == email.lower())
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_user(row) if row else None

    # Expenses

    def create_expense(self, user_id: str, **fields) -> ExpenseRecord:
        now = time.time()
        with self.Session() as session:
            row = ExpenseRow(
                id=uuid.uuid4().hex,
                user_id=user_id,
                is_synced=False,
                created_at=now,
                updated_at=now,
                **_pick(fields, EXPENSE_FIELDS),
            )
            session.add(row)
            session.commit()
            return self._to_expense(row)

    def get_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        with self.Session() as session:
            row = self._owned(session, ExpenseRow, user_id, expense_id)
            return self._to_expense(row) if row else None

    def list_expenses(
        self,
        user_id: str,
        *,
        category: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExpenseRecord]:
        stmt = select(ExpenseRow).where(ExpenseRow.user_id == user_id)
        if category is not None:
            stmt = stmt.where(ExpenseRow.category == category)
        if year is not None:
            start, end = _year_bounds(year)
            stmt = stmt.where(ExpenseRow.incurred_on.between(start, end))
        stmt = (
            stmt.order_by(ExpenseRow.incurred_on.desc(), ExpenseRow.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.Session() as session:
            return [self._to_expense(row) for row in session.execute(stmt).scalars()]

    def update_expense(
        self, user_id: str, expense_id: str, changes: dict
    ) -> Optional[ExpenseRecord]:
        with self.Session() as session:
            row = self._owned(session, ExpenseRow, user_id, expense_id)
            if row is None:
                return None
            for key, value in _pick(changes, EXPENSE_FIELDS).items():
                setattr(row, key, value)
            row.is_synced = False
            row.updated_at = time.time()
            session.commit()
            return self._to_expense(row)

    def delete_expense(self, user_id: str, expense_id: str) -> Optional[ExpenseRecord]:
        with self.Session() as session:
            row = self._owned(session, ExpenseRow, user_id, expense_id)
            if row is None:
                return None
            record = self._to_expense(row)
            session.delete(row)
            session.commit()
            return record

    # Invoices

    def create_invoice(self, user_id: str, **fields) -> InvoiceRecord:
        now = time.time()
        fields = _pick(fields, INVOICE_FIELDS)
        if "status" in fields:
            fields["status"] = InvoiceStatus(fields["status"]).value
        with self.Session() as session:
            row = InvoiceRow(
                id=uuid.uuid4().hex,
                user_id=user_id,
                is_synced=False,
                created_at=now,
                updated_at=now,
                **fields,
            )
            if row.status is None:
                row.status = InvoiceStatus.DRAFT.value
            session.add(row)
            self._commit(session, f"Invoice number already used: {fields['number']}")
            return self._to_invoice(row)

    def get_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        with self.Session() as session:
            row = self._owned(session, InvoiceRow, user_id, invoice_id)
            return self._to_invoice(row) if row else None

    def list_invoices(
        self,
        user_id: str,
        *,
        status: Optional[InvoiceStatus] = None,
        year: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InvoiceRecord]:
        stmt = select(InvoiceRow).where(InvoiceRow.user_id == user_id)
        if status is not None:
            stmt = stmt.where(InvoiceRow.status == InvoiceStatus(status).value)
        if year is not None:
            start, end = _year_bounds(year)
            stmt = stmt.where(InvoiceRow.issue_date.between(start, end))
        stmt = (
            stmt.order_by(InvoiceRow.issue_date.desc(), InvoiceRow.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.Session() as session:
            return [self._to_invoice(row) for row in session.execute(stmt).scalars()]

    def update_invoice(
        self, user_id: str, invoice_id: str, changes: dict
    ) -> Optional[InvoiceRecord]:
        changes = _pick(changes, INVOICE_FIELDS)
        with self.Session() as session:
            # Lock the row so two concurrent status changes cannot both pass
            # the lifecycle check.
            stmt = (
                select(InvoiceRow)
                .where(InvoiceRow.id == invoice_id, InvoiceRow.user_id == user_id)
                .with_for_update()
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                return None
            _check_invoice_change(InvoiceStatus(row.status), changes)
            for key, value in changes.items():
                if key == "status":
                    value = InvoiceStatus(value).value
                setattr(row, key, value)
            row.is_synced = False
            row.updated_at = time.time()
            message = f"Invoice number already used: {row.number}"
            self._commit(session, message)
            return self._to_invoice(row)

    def delete_invoice(self, user_id: str, invoice_id: str) -> Optional[InvoiceRecord]:
        with self.Session() as session:
            row = self._owned(session, InvoiceRow, user_id, invoice_id)
            if row is None:
                return None
            record = self._to_invoice(row)
            session.delete(row)
            session.commit()
            return record

    def mark_overdue_invoices(self, today: date) -> list[InvoiceRecord]:
        now = time.time()
        with self.Session() as session:
            stmt = (
                select(InvoiceRow)
                .where(
                    InvoiceRow.status == InvoiceStatus.SENT.value,
                    InvoiceRow.due_date < today,
                )
                .with_for_update(skip_locked=True)
            )
            rows = list(session.execute(stmt).scalars())
            for row in rows:
                row.status = InvoiceStatus.OVERDUE.value
                row.is_synced = False
                row.updated_at = now
            session.commit()
            return [self._to_invoice(row) for row in rows]

    # Sync flags

    def get_record(
        self, record_type: RecordType, record_id: str
    ) -> Optional[SyncableRecord]:
        with self.Session() as session:
            if record_type == RecordType.EXPENSE:
                row = session.get(ExpenseRow, record_id)
                return self._to_expense(row) if row else None
            row = session.get(InvoiceRow, record_id)
            return self._to_invoice(row) if row else None

    def mark_record_synced(
        self,
        record_type: RecordType,
        record_id: str,
        *,
        export_path: str,
        source_updated_at: float,
    ) -> bool:
        row_cls = ExpenseRow if record_type == RecordType.EXPENSE else InvoiceRow
        with self.Session() as session:
            updated = (
                session.query(row_cls)
                .filter(
                    row_cls.id == record_id,
                    row_cls.updated_at == source_updated_at,
                )
                .update(
                    {
                        row_cls.is_synced: True,
                        row_cls.export_path: export_path,
                        row_cls.synced_at: time.time(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return bool(updated)

    # Sync jobs

    @staticmethod
    def _waiting_job_stmt(record_type: RecordType, record_id: str, action: SyncAction):
        return (
            select(SyncJobRow)
            .where(
                SyncJobRow.status == SyncStatus.WAITING.value,
                SyncJobRow.record_type == RecordType(record_type).value,
                SyncJobRow.record_id == record_id,
                SyncJobRow.action == SyncAction(action).value,
            )
            .order_by(SyncJobRow.created_at)
            .limit(1)
        )

    def find_waiting_sync_job(
        self, record_type: RecordType, record_id: str, action: SyncAction
    ) -> Optional[SyncJobRecord]:
        with self.Session() as session:
            row = session.execute(
                self._waiting_job_stmt(record_type, record_id, action)
            ).scalar_one_or_none()
            return self._to_job(row) if row else None

    def create_sync_job(
        self,
        user_id: str,
        record_type: RecordType,
        record_id: str,
        action: SyncAction,
        storage_path: Optional[str] = None,
    ) -> SyncJobRecord:
        now = time.time()
        with self.Session() as session:
            stmt = self._waiting_job_stmt(record_type, record_id, action)
            existing = session.execute(stmt).scalar_one_or_none()
            if existing:
                return self._to_job(existing)
            row = SyncJobRow(
                job_id=uuid.uuid4().hex,
                user_id=user_id,
                record_type=RecordType(record_type).value,
                record_id=record_id,
                action=SyncAction(action).value,
                status=SyncStatus.WAITING.value,
                attempts=0,
                storage_path=storage_path,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_job(row)

    def get_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        with self.Session() as session:
            row = session.get(SyncJobRow, job_id)
            return self._to_job(row) if row else None

    def list_sync_jobs(
        self, user_id: str, *, status: Optional[SyncStatus] = None, limit: int = 50
    ) -> list[SyncJobRecord]:
        stmt = select(SyncJobRow).where(SyncJobRow.user_id == user_id)
        if status is not None:
            stmt = stmt.where(SyncJobRow.status == SyncStatus(status).value)
        stmt = stmt.order_by(SyncJobRow.created_at.desc()).limit(limit)
        with self.Session() as session:
            return [self._to_job(row) for row in session.execute(stmt).scalars()]

    def claim_sync_job(self, job_id: str) -> Optional[SyncJobRecord]:
        now = time.time()
        with self.Session() as session:
            updated = (
                session.query(SyncJobRow)
                .filter(
                    SyncJobRow.job_id == job_id,
                    SyncJobRow.status == SyncStatus.WAITING.value,
                )
                .update(
                    {
                        SyncJobRow.status: SyncStatus.RUNNING.value,
                        SyncJobRow.locked_at: now,
                        SyncJobRow.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            if not updated:
                return None
            return self._to_job(session.get(SyncJobRow, job_id))

    def claim_next_waiting_job(self) -> Optional[SyncJobRecord]:
        now = time.time()
        with self.Session() as session:
            stmt = (
                select(SyncJobRow)
                .where(SyncJobRow.status == SyncStatus.WAITING.value)
                .order_by(SyncJobRow.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job = session.execute(stmt).scalar_one_or_none()
            if not job:
                return None
            job.status = SyncStatus.RUNNING.value
            job.locked_at = now
            job.updated_at = now
            session.commit()
            return self._to_job(job)

    def update_sync_job(
        self,
        job_id: str,
        *,
        status: SyncStatus,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        with self.Session() as session:
            job = session.get(SyncJobRow, job_id)
            if not job:
                return
            job.status = SyncStatus(status).value
            job.last_error = last_error
            if attempts is not None:
                job.attempts = attempts
            if status != SyncStatus.RUNNING:
                job.locked_at = None
            job.updated_at = time.time()
            session.commit()

    def requeue_stale_locks(self, lock_timeout_seconds: float = 900) -> int:
        cutoff = time.time() - lock_timeout_seconds
        with self.Session() as session:
            updated = (
                session.query(SyncJobRow)
                .filter(
                    SyncJobRow.status == SyncStatus.RUNNING.value,
                    SyncJobRow.locked_at != None,
                    SyncJobRow.locked_at < cutoff,
                )
                .update(
                    {
                        SyncJobRow.status: SyncStatus.WAITING.value,
                        SyncJobRow.locked_at: None,
                        SyncJobRow.updated_at: time.time(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated or 0

    def list_unsynced(self, limit: int = 500) -> list[SyncableRecord]:
        with self.Session() as session:
            expenses = session.execute(
                select(ExpenseRow)
                .where(ExpenseRow.is_synced.is_(False))
                .order_by(ExpenseRow.updated_at.asc())
                .limit(limit)
            ).scalars().all()
            invoices = session.execute(
                select(InvoiceRow)
                .where(InvoiceRow.is_synced.is_(False))
                .order_by(InvoiceRow.updated_at.asc())
                .limit(limit)
            ).scalars().all()
            records: list[SyncableRecord] = [self._to_expense(r) for r in expenses]
            records.extend(self._to_invoice(r) for r in invoices)
        records.sort(key=lambda r: r.updated_at)
        return records[:limit]

    # Dashboard

    def summarize(self, user_id: str, year: int) -> DashboardSummary:
        start, end = _year_bounds(year)
        summary = DashboardSummary(year=year)
        with self.Session() as session:
            expense_rows = session.execute(
                select(ExpenseRow.category, func.sum(ExpenseRow.amount))
                .where(
                    ExpenseRow.user_id == user_id,
                    ExpenseRow.incurred_on.between(start, end),
                )
                .group_by(ExpenseRow.category)
            ).all()
            for category, total in expense_rows:
                amount = Decimal(total or 0)
                summary.expenses_by_category[category] = amount
                summary.expense_total += amount

            invoice_rows = session.execute(
                select(
                    InvoiceRow.status,
                    func.sum(InvoiceRow.amount),
                    func.count(InvoiceRow.id),
                )
                .where(
                    InvoiceRow.user_id == user_id,
                    InvoiceRow.issue_date.between(start, end),
                )
                .group_by(InvoiceRow.status)
            ).all()
            for status, total, count in invoice_rows:
                amount = Decimal(total or 0)
                summary.invoice_totals_by_status[status] = amount
                summary.invoice_counts_by_status[status] = count
                if InvoiceStatus(status) in OUTSTANDING_STATUSES:
                    summary.outstanding_total += amount

            unsynced = 0
            for row_cls in (ExpenseRow, InvoiceRow):
                unsynced += session.execute(
                    select(func.count(row_cls.id)).where(
                        row_cls.user_id == user_id, row_cls.is_synced.is_(False)
                    )
                ).scalar_one()
            summary.unsynced_records = unsynced
        return summary


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class ExpenseRow(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    category = Column(String, nullable=False, index=True)
    incurred_on = Column(Date, nullable=False, index=True)
    vendor = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=False)
    export_path = Column(String, nullable=True)
    synced_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class InvoiceRow(Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("user_id", "number", name="uq_invoice_number"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    number = Column(String, nullable=False)
    client_name = Column(String, nullable=False)
    client_email = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    issue_date = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    is_synced = Column(Boolean, nullable=False, default=False)
    export_path = Column(String, nullable=True)
    synced_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class SyncJobRow(Base):
    __tablename__ = "sync_jobs"

    job_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    record_type = Column(String, nullable=False)
    record_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    storage_path = Column(String, nullable=True)
    locked_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
