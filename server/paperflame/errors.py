"""
Domain exceptions raised by the DB layer and the invoice lifecycle rules.

Routes translate these into HTTP 409 responses; missing rows are signalled
by ``None`` return values instead.
"""

from __future__ import annotations


class PaperFlameError(Exception):
    """Base class for PaperFlame domain errors."""


class DuplicateRecordError(PaperFlameError):
    """A unique field (user email, invoice number) is already taken."""


class InvalidTransitionError(PaperFlameError):
    """An invoice status change or edit is not allowed from its current status."""
