"""
Backup document layout for exported records.

Files are organised per tenant, then by year and category:

  PaperFlame/<user id>/2024/Expenses/travel/expense-<id>.json
  PaperFlame/<user id>/2024/Invoices/invoice-inv-2024-001-<id>.json
"""

from __future__ import annotations

import re
import time
from dataclasses import asdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from paperflame.db import ExpenseRecord, InvoiceRecord, SyncableRecord
from shared.json_utils import convert_keys
from shared.types import RecordType

# Internal bookkeeping that never goes into the backup document.
PRIVATE_FIELDS = ("user_id", "is_synced", "export_path", "synced_at")


def slugify(value: str, fallback: str = "uncategorized") -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or fallback


def record_type_of(record: SyncableRecord) -> RecordType:
    if isinstance(record, ExpenseRecord):
        return RecordType.EXPENSE
    if isinstance(record, InvoiceRecord):
        return RecordType.INVOICE
    raise TypeError(f"Not a syncable record: {type(record).__name__}")


def export_path(record: SyncableRecord, root: str = "PaperFlame") -> str:
    # Invoice numbers are only unique per tenant and slugs can collide, so
    # every key carries the owner and the record id.
    prefix = f"{root.strip('/')}/{record.user_id}"
    if isinstance(record, ExpenseRecord):
        year = record.incurred_on.year
        return (
            f"{prefix}/{year}/Expenses/{slugify(record.category)}"
            f"/expense-{record.id}.json"
        )
    year = record.issue_date.year
    return (
        f"{prefix}/{year}/Invoices"
        f"/invoice-{slugify(record.number, 'invoice')}-{record.id}.json"
    )


def _to_json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def build_export_document(record: SyncableRecord) -> dict:
    payload = {
        key: _to_json_value(value)
        for key, value in asdict(record).items()
        if key not in PRIVATE_FIELDS
    }
    payload["record_type"] = record_type_of(record).value
    payload["exported_at"] = datetime.fromtimestamp(
        time.time(), tz=timezone.utc
    ).isoformat()
    return convert_keys(payload, "snake_to_camel")
