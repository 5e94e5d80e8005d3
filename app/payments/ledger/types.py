"""Value types passed to and returned from LedgerService."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Money:
    """Cents plus currency. Renders as "$85.00 USD"."""

    cents: int
    currency: str = "usd"

    def __str__(self) -> str:
        return f"${self.cents / 100:.2f} {self.currency.upper()}"


@dataclass
class RecordEntryParams:
    """
    One posting: amount_cents leaves debit_account_id and lands in credit_account_id.

    idempotency_key is derived from the business object
    (e.g. f"escrow_hold:{hold.id}"), so posting the same movement twice
    returns the first entry. reference_type/reference_id point back at that
    object for audits.
    """

    debit_account_id: uuid.UUID
    credit_account_id: uuid.UUID
    amount_cents: int
    entry_type: str
    idempotency_key: str

    reference_type: str | None = None
    reference_id: uuid.UUID | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError(f"Ledger postings move a positive amount, got {self.amount_cents}")
        if not self.idempotency_key:
            raise ValueError("Ledger postings need an idempotency key")
        if self.debit_account_id == self.credit_account_id:
            raise ValueError("Debit and credit accounts must differ")
