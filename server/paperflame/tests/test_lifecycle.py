import unittest
from datetime import date
from decimal import Decimal

from paperflame.db import InMemoryDbClient
from paperflame.errors import InvalidTransitionError
from paperflame.lifecycle import can_transition, check_editable, check_transition
from shared.types import InvoiceStatus


class LifecycleTests(unittest.TestCase):
    def test_allowed_transitions(self):
        self.assertTrue(can_transition(InvoiceStatus.DRAFT, InvoiceStatus.SENT))
        self.assertTrue(can_transition(InvoiceStatus.SENT, InvoiceStatus.PAID))
        self.assertTrue(can_transition(InvoiceStatus.SENT, InvoiceStatus.OVERDUE))
        self.assertTrue(can_transition(InvoiceStatus.OVERDUE, InvoiceStatus.PAID))
        self.assertTrue(can_transition(InvoiceStatus.PAID, InvoiceStatus.PAID))

    def test_rejected_transitions(self):
        self.assertFalse(can_transition(InvoiceStatus.DRAFT, InvoiceStatus.PAID))
        self.assertFalse(can_transition(InvoiceStatus.PAID, InvoiceStatus.SENT))
        self.assertFalse(can_transition(InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT))
        with self.assertRaises(InvalidTransitionError):
            check_transition(InvoiceStatus.OVERDUE, InvoiceStatus.DRAFT)

    def test_terminal_invoice_is_read_only(self):
        check_editable(InvoiceStatus.SENT, {"notes": "reminder sent"})
        check_editable(InvoiceStatus.PAID, {"status": InvoiceStatus.PAID})
        with self.assertRaises(InvalidTransitionError):
            check_editable(InvoiceStatus.PAID, {"amount": "1.00"})
        with self.assertRaises(InvalidTransitionError):
            check_editable(InvoiceStatus.CANCELLED, {"status": InvoiceStatus.SENT})



class InvoiceUpdateLifecycleTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.user = self.db.create_user("ada@example.com", "Ada", "hash")
        self.invoice = self.db.create_invoice(
            self.user.id,
            number="INV-1",
            client_name="Acme",
            amount=Decimal("500.00"),
            currency="EUR",
            issue_date=date(2024, 5, 1),
            due_date=date(2024, 5, 31),
        )

    def test_invalid_status_change_leaves_invoice_untouched(self):
        with self.assertRaises(InvalidTransitionError):
            self.db.update_invoice(
                self.user.id, self.invoice.id, {"status": "paid", "notes": "early"}
            )
        self.assertEqual(self.invoice.status, InvoiceStatus.DRAFT)
        self.assertIsNone(self.invoice.notes)

    def test_terminal_invoice_cannot_be_edited(self):
        self.db.update_invoice(self.user.id, self.invoice.id, {"status": "cancelled"})
        with self.assertRaises(InvalidTransitionError):
            self.db.update_invoice(self.user.id, self.invoice.id, {"notes": "reopen"})


if __name__ == "__main__":
    unittest.main()
