"""
Invoice status transitions.
"""

from __future__ import annotations

from paperflame.errors import InvalidTransitionError
from shared.types import InvoiceStatus

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Statuses whose amount is still owed by the client.
OUTSTANDING_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.OVERDUE})


def can_transition(current: InvoiceStatus, new: InvoiceStatus) -> bool:
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS[current]


def check_transition(current: InvoiceStatus, new: InvoiceStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(
            f"Invoice cannot move from {current.value} to {new.value}"
        )


def check_editable(current: InvoiceStatus, changes: dict) -> None:
    """
    Reject edits to an invoice that has reached a terminal status.

    A change set that only repeats the current status is allowed.
    """
    if current not in TERMINAL_STATUSES:
        return
    edited = {k for k, v in changes.items() if not (k == "status" and v == current)}
    if edited:
        raise InvalidTransitionError(
            f"Invoice is {current.value} and can no longer be edited"
        )
