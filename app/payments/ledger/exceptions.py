"""
Errors raised by LedgerService.

All of them abort the posting: no entry is written and no balance moves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid


class LedgerError(BaseApplicationError):
    default_error_code: str = "LEDGER_ERROR"


class AccountNotFound(LedgerError):
    default_error_code: str = "ACCOUNT_NOT_FOUND"
    http_status: int = 404


class InactiveAccount(LedgerError):
    default_error_code: str = "INACTIVE_ACCOUNT"
    http_status: int = 409


class InsufficientBalance(LedgerError):
    """A debit larger than the account holds, on an account that may not go negative."""

    default_error_code: str = "INSUFFICIENT_BALANCE"
    http_status: int = 409

    def __init__(self, account_id: uuid.UUID, required: int, available: int):
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            message=f"Account {account_id} holds {available} cents, {required} needed",
            details={
                "account_id": str(account_id),
                "required_cents": required,
                "available_cents": available,
            },
        )
