import unittest
from datetime import date
from decimal import Decimal

from paperflame.db import PostgresDbClient
from paperflame.errors import DuplicateRecordError, InvalidTransitionError
from shared.types import InvoiceStatus, RecordType, SyncAction, SyncStatus


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.user = self.db.create_user("Ada@Example.com", "Ada", "hash")
        self.other = self.db.create_user("bob@example.com", "Bob", "hash")

    def _expense(self, user_id=None, **overrides):
        fields = {
            "description": "Laptop stand",
            "amount": Decimal("39.90"),
            "currency": "EUR",
            "category": "Office",
            "incurred_on": date(2024, 5, 2),
        }
        fields.update(overrides)
        return self.db.create_expense(user_id or self.user.id, **fields)

    def _invoice(self, user_id=None, **overrides):
        fields = {
            "number": "INV-1",
            "client_name": "Acme",
            "amount": Decimal("500.00"),
            "currency": "EUR",
            "issue_date": date(2024, 5, 1),
            "due_date": date(2024, 5, 31),
        }
        fields.update(overrides)
        return self.db.create_invoice(user_id or self.user.id, **fields)

    def test_user_email_is_unique_and_case_insensitive(self):
        self.assertEqual(self.user.email, "ada@example.com")
        self.assertEqual(self.db.get_user_by_email("ADA@example.com").id, self.user.id)
        with self.assertRaises(DuplicateRecordError):
            self.db.create_user("ada@example.com", "Imposter", "hash")

    def test_expense_crud_is_scoped_to_tenant(self):
        expense = self._expense()
        self.assertEqual(expense.amount, Decimal("39.90"))
        self.assertFalse(expense.is_synced)

        self.assertIsNone(self.db.get_expense(self.other.id, expense.id))
        self.assertIsNone(self.db.update_expense(self.other.id, expense.id, {"notes": "x"}))
        self.assertIsNone(self.db.delete_expense(self.other.id, expense.id))

        updated = self.db.update_expense(
            self.user.id, expense.id, {"category": "Hardware", "user_id": self.other.id}
        )
        self.assertEqual(updated.category, "Hardware")
        self.assertEqual(updated.user_id, self.user.id)

        deleted = self.db.delete_expense(self.user.id, expense.id)
        self.assertEqual(deleted.id, expense.id)
        self.assertIsNone(self.db.get_expense(self.user.id, expense.id))

    def test_list_expenses_filters_and_orders(self):
        self._expense(incurred_on=date(2024, 1, 10))
        self._expense(incurred_on=date(2024, 6, 1), category="Travel")
        self._expense(incurred_on=date(2023, 12, 31))
        self._expense(user_id=self.other.id)

        items = self.db.list_expenses(self.user.id)
        self.assertEqual(
            [e.incurred_on for e in items],
            [date(2024, 6, 1), date(2024, 1, 10), date(2023, 12, 31)],
        )
        self.assertEqual(len(self.db.list_expenses(self.user.id, year=2024)), 2)
        self.assertEqual(len(self.db.list_expenses(self.user.id, category="Travel")), 1)
        self.assertEqual(len(self.db.list_expenses(self.user.id, limit=1, offset=2)), 1)

    def test_invoice_number_unique_per_tenant(self):
        self._invoice()
        with self.assertRaises(DuplicateRecordError):
            self._invoice()
        # Same number for a different tenant is fine.
        self._invoice(user_id=self.other.id)

        second = self._invoice(number="INV-2")
        with self.assertRaises(DuplicateRecordError):
            self.db.update_invoice(self.user.id, second.id, {"number": "INV-1"})
        self.assertEqual(self.db.get_invoice(self.user.id, second.id).number, "INV-2")

    def test_invoice_status_roundtrip(self):
        invoice = self._invoice()
        self.assertEqual(invoice.status, InvoiceStatus.DRAFT)
        updated = self.db.update_invoice(
            self.user.id, invoice.id, {"status": InvoiceStatus.SENT}
        )
        self.assertEqual(updated.status, InvoiceStatus.SENT)
        sent = self.db.list_invoices(self.user.id, status=InvoiceStatus.SENT)
        self.assertEqual([i.id for i in sent], [invoice.id])

    def test_update_invoice_enforces_lifecycle(self):
        invoice = self._invoice()
        with self.assertRaises(InvalidTransitionError):
            self.db.update_invoice(self.user.id, invoice.id, {"status": InvoiceStatus.PAID})
        self.assertEqual(
            self.db.get_invoice(self.user.id, invoice.id).status, InvoiceStatus.DRAFT
        )

        self.db.update_invoice(self.user.id, invoice.id, {"status": "sent"})
        self.db.update_invoice(self.user.id, invoice.id, {"status": "paid"})
        with self.assertRaises(InvalidTransitionError):
            self.db.update_invoice(self.user.id, invoice.id, {"status": "sent"})
        with self.assertRaises(InvalidTransitionError):
            self.db.update_invoice(self.user.id, invoice.id, {"amount": Decimal("1.00")})
        paid = self.db.get_invoice(self.user.id, invoice.id)
        self.assertEqual(paid.status, InvoiceStatus.PAID)
        self.assertEqual(paid.amount, Decimal("500.00"))

    def test_find_waiting_sync_job(self):
        self.assertIsNone(
            self.db.find_waiting_sync_job(RecordType.EXPENSE, "a", SyncAction.EXPORT)
        )
        job = self.db.create_sync_job(self.user.id, RecordType.EXPENSE, "a", SyncAction.EXPORT)
        found = self.db.find_waiting_sync_job(RecordType.EXPENSE, "a", SyncAction.EXPORT)
        self.assertEqual(found.job_id, job.job_id)
        self.assertIsNone(
            self.db.find_waiting_sync_job(RecordType.EXPENSE, "a", SyncAction.DELETE)
        )

        self.db.claim_sync_job(job.job_id)
        self.assertIsNone(
            self.db.find_waiting_sync_job(RecordType.EXPENSE, "a", SyncAction.EXPORT)
        )

    def test_mark_overdue_invoices(self):
        due = self._invoice(status=InvoiceStatus.SENT)
        self._invoice(number="INV-2", status=InvoiceStatus.SENT, due_date=date(2024, 7, 1))
        self._invoice(number="INV-3")

        overdue = self.db.mark_overdue_invoices(date(2024, 6, 15))
        self.assertEqual([i.id for i in overdue], [due.id])
        refreshed = self.db.get_invoice(self.user.id, due.id)
        self.assertEqual(refreshed.status, InvoiceStatus.OVERDUE)
        self.assertFalse(refreshed.is_synced)

    def test_mark_record_synced_requires_unchanged_record(self):
        expense = self._expense()
        self.assertTrue(
            self.db.mark_record_synced(
                RecordType.EXPENSE,
                expense.id,
                export_path="PaperFlame/2024/Expenses/office/x.json",
                source_updated_at=expense.updated_at,
            )
        )
        synced = self.db.get_expense(self.user.id, expense.id)
        self.assertTrue(synced.is_synced)
        self.assertEqual(synced.export_path, "PaperFlame/2024/Expenses/office/x.json")

        updated = self.db.update_expense(self.user.id, expense.id, {"notes": "later"})
        self.assertFalse(updated.is_synced)
        self.assertFalse(
            self.db.mark_record_synced(
                RecordType.EXPENSE,
                expense.id,
                export_path="other.json",
                source_updated_at=expense.updated_at,
            )
        )

    def test_sync_job_dedupe_and_claim(self):
        expense = self._expense()
        job = self.db.create_sync_job(
            self.user.id, RecordType.EXPENSE, expense.id, SyncAction.EXPORT
        )
        again = self.db.create_sync_job(
            self.user.id, RecordType.EXPENSE, expense.id, SyncAction.EXPORT
        )
        self.assertEqual(job.job_id, again.job_id)
        self.assertEqual(job.status, SyncStatus.WAITING)

        claimed = self.db.claim_sync_job(job.job_id)
        self.assertEqual(claimed.status, SyncStatus.RUNNING)
        self.assertIsNotNone(claimed.locked_at)
        self.assertIsNone(self.db.claim_sync_job(job.job_id))

        # The running job no longer absorbs new requests.
        fresh = self.db.create_sync_job(
            self.user.id, RecordType.EXPENSE, expense.id, SyncAction.EXPORT
        )
        self.assertNotEqual(fresh.job_id, job.job_id)

    def test_claim_next_waiting_job_oldest_first(self):
        first = self.db.create_sync_job(self.user.id, RecordType.EXPENSE, "a", SyncAction.EXPORT)
        self.db.create_sync_job(self.user.id, RecordType.EXPENSE, "b", SyncAction.EXPORT)
        claimed = self.db.claim_next_waiting_job()
        self.assertEqual(claimed.job_id, first.job_id)

    def test_update_and_requeue_stale_jobs(self):
        job = self.db.create_sync_job(
            self.user.id, RecordType.INVOICE, "inv", SyncAction.DELETE, storage_path="p.json"
        )
        self.assertEqual(job.storage_path, "p.json")
        self.db.claim_sync_job(job.job_id)

        self.assertEqual(self.db.requeue_stale_locks(lock_timeout_seconds=3600), 0)
        self.assertEqual(self.db.requeue_stale_locks(lock_timeout_seconds=-1), 1)
        requeued = self.db.get_sync_job(job.job_id)
        self.assertEqual(requeued.status, SyncStatus.WAITING)
        self.assertIsNone(requeued.locked_at)

        self.db.update_sync_job(
            job.job_id, status=SyncStatus.ERROR, last_error="boom", attempts=3
        )
        failed = self.db.get_sync_job(job.job_id)
        self.assertEqual(failed.status, SyncStatus.ERROR)
        self.assertEqual(failed.last_error, "boom")
        self.assertEqual(failed.attempts, 3)

        self.assertEqual(len(self.db.list_sync_jobs(self.user.id)), 1)
        self.assertEqual(len(self.db.list_sync_jobs(self.user.id, status=SyncStatus.WAITING)), 0)
        self.assertEqual(self.db.list_sync_jobs(self.other.id), [])

    def test_list_unsynced(self):
        expense = self._expense()
        invoice = self._invoice()
        self.db.mark_record_synced(
            RecordType.EXPENSE,
            expense.id,
            export_path="e.json",
            source_updated_at=expense.updated_at,
        )
        self.assertEqual([r.id for r in self.db.list_unsynced()], [invoice.id])

    def test_summarize(self):
        self._expense(amount=Decimal("10.00"))
        self._expense(amount=Decimal("5.50"))
        self._expense(amount=Decimal("100.00"), category="Travel")
        self._expense(amount=Decimal("999.00"), incurred_on=date(2023, 1, 1))
        self._expense(user_id=self.other.id, amount=Decimal("77.00"))
        self._invoice(status=InvoiceStatus.SENT)
        self._invoice(number="INV-2", status=InvoiceStatus.OVERDUE, amount=Decimal("250.00"))
        self._invoice(number="INV-3", status=InvoiceStatus.PAID, amount=Decimal("80.00"))

        summary = self.db.summarize(self.user.id, 2024)
        self.assertEqual(summary.expense_total, Decimal("115.50"))
        self.assertEqual(
            summary.expenses_by_category,
            {"Office": Decimal("15.50"), "Travel": Decimal("100.00")},
        )
        self.assertEqual(summary.outstanding_total, Decimal("750.00"))
        self.assertEqual(
            summary.invoice_counts_by_status, {"sent": 1, "overdue": 1, "paid": 1}
        )
        self.assertEqual(summary.unsynced_records, 7)


if __name__ == "__main__":
    unittest.main()
