from __future__ import annotations


class ConflictError(Exception):
    """The request collides with existing state (duplicate submission, job already running)."""


class LedgerIntegrityError(RuntimeError):
    """A stored ledger row failed validation at the store boundary."""

    def __init__(self, row_id: int | None, reason: str) -> None:
        super().__init__(f'Ledger row {row_id}: {reason}')
        self.row_id = row_id
        self.reason = reason
