import unittest
from datetime import date
from decimal import Decimal

from paperflame.db import ExpenseRecord, InvoiceRecord
from paperflame.export import build_export_document, export_path, record_type_of, slugify
from shared.types import InvoiceStatus, RecordType


class ExportTests(unittest.TestCase):
    def setUp(self):
        self.expense = ExpenseRecord(
            id="e1",
            user_id="u1",
            description="Train to Lyon",
            amount=Decimal("84.20"),
            currency="EUR",
            category="Travel & Meals",
            incurred_on=date(2023, 11, 3),
            vendor="SNCF",
        )
        self.invoice = InvoiceRecord(
            id="i1",
            user_id="u1",
            number="INV/2024/001",
            client_name="Acme",
            amount=Decimal("1200.00"),
            currency="USD",
            issue_date=date(2024, 1, 15),
            due_date=date(2024, 2, 14),
            status=InvoiceStatus.SENT,
        )

    def test_slugify(self):
        self.assertEqual(slugify("Travel & Meals"), "travel-meals")
        self.assertEqual(slugify("INV/2024/001"), "inv-2024-001")
        self.assertEqual(slugify("  "), "uncategorized")
        self.assertEqual(slugify("!!!", "fallback"), "fallback")

    def test_expense_path(self):
        self.assertEqual(
            export_path(self.expense),
            "PaperFlame/u1/2023/Expenses/travel-meals/expense-e1.json",
        )
        self.assertEqual(
            export_path(self.expense, "/backups/"),
            "backups/u1/2023/Expenses/travel-meals/expense-e1.json",
        )

    def test_invoice_path(self):
        self.assertEqual(
            export_path(self.invoice),
            "PaperFlame/u1/2024/Invoices/invoice-inv-2024-001-i1.json",
        )

    def test_same_invoice_number_in_two_tenants(self):
        other = InvoiceRecord(
            id="i2",
            user_id="u2",
            number="INV 2024 001",
            client_name="Globex",
            amount=Decimal("50.00"),
            currency="USD",
            issue_date=date(2024, 3, 1),
            due_date=date(2024, 3, 31),
        )
        self.assertEqual(slugify(other.number), slugify(self.invoice.number))
        self.assertNotEqual(export_path(other), export_path(self.invoice))
        self.assertTrue(export_path(other).startswith("PaperFlame/u2/"))

    def test_record_type_of(self):
        self.assertEqual(record_type_of(self.expense), RecordType.EXPENSE)
        self.assertEqual(record_type_of(self.invoice), RecordType.INVOICE)
        with self.assertRaises(TypeError):
            record_type_of(object())

    def test_document_hides_bookkeeping_fields(self):
        self.expense.is_synced = True
        self.expense.export_path = "old.json"
        document = build_export_document(self.expense)

        for key in ("userId", "isSynced", "exportPath", "syncedAt"):
            self.assertNotIn(key, document)
        self.assertEqual(document["recordType"], "expense")
        self.assertEqual(document["amount"], "84.20")
        self.assertEqual(document["incurredOn"], "2023-11-03")
        self.assertEqual(document["vendor"], "SNCF")
        self.assertIn("exportedAt", document)

    def test_invoice_document(self):
        document = build_export_document(self.invoice)
        self.assertEqual(document["status"], "sent")
        self.assertEqual(document["clientName"], "Acme")
        self.assertEqual(document["dueDate"], "2024-02-14")
        self.assertIsNone(document["clientEmail"])


if __name__ == "__main__":
    unittest.main()
