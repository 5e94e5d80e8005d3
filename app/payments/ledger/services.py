"""
Ledger service layer.

All ledger writes go through LedgerService. Recording an entry and moving
the two account balances happen in one transaction, and balances are moved
with SQL expressions (balance_cents = balance_cents + delta) so concurrent
writers never overwrite each other's deltas.

Usage:
    from payments.ledger.services import LedgerService
    from payments.ledger.types import RecordEntryParams

    escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW)
    wallet = LedgerService.get_wallet(provider.id)

    LedgerService.record_entry(RecordEntryParams(
        debit_account_id=escrow.id,
        credit_account_id=wallet.id,
        amount_cents=8500,
        entry_type=EntryType.PAYOUT,
        idempotency_key=f"early_payout:{schedule.id}",
    ))
"""

from __future__ import annotations

import logging
import uuid

from django.db import IntegrityError, transaction
from django.db.models import F

from .exceptions import AccountNotFound, InactiveAccount, InsufficientBalance
from .models import AccountType, LedgerAccount, LedgerEntry
from .types import Money, RecordEntryParams

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Stateless ledger operations.

    Key features:
    - Idempotency via unique keys (replays return the original entry)
    - Balance validation before debits
    - Accounts locked in id order to avoid deadlocks
    """

    @staticmethod
    def get_or_create_account(
        account_type: AccountType | str,
        owner_id: int | None = None,
        currency: str = "usd",
        allow_negative: bool = False,
    ) -> LedgerAccount:
        account, _ = LedgerAccount.objects.get_or_create(
            type=account_type,
            owner_id=owner_id,
            currency=currency,
            defaults={"allow_negative": allow_negative},
        )
        return account

    @staticmethod
    def platform_account(account_type: AccountType | str, currency: str = "usd") -> LedgerAccount:
        """
        Get a platform-owned account.

        The external Stripe account stands for the outside world and may
        go negative; every other platform account may not.
        """
        return LedgerService.get_or_create_account(
            account_type,
            currency=currency,
            allow_negative=account_type == AccountType.EXTERNAL_STRIPE,
        )

    @staticmethod
    def get_wallet(user_id: int, currency: str = "usd") -> LedgerAccount:
        """Get or create a user's wallet (USER_BALANCE account)."""
        return LedgerService.get_or_create_account(
            AccountType.USER_BALANCE,
            owner_id=user_id,
            currency=currency,
        )

    @staticmethod
    def get_account(account_id: uuid.UUID) -> LedgerAccount:
        try:
            return LedgerAccount.objects.get(id=account_id)
        except LedgerAccount.DoesNotExist:
            raise AccountNotFound(
                f"Account {account_id} not found",
                details={"account_id": str(account_id)},
            )

    @staticmethod
    def record_entry(params: RecordEntryParams) -> LedgerEntry:
        """Record a single entry. See record_entries."""
        return LedgerService.record_entries([params])[0]

    @staticmethod
    def record_entries(entries: list[RecordEntryParams]) -> list[LedgerEntry]:
        """
        Record entries atomically and move account balances.

        All entries succeed or all fail. Entries whose idempotency key
        already exists are returned unchanged and move no money. Entries
        are applied in order, so an earlier entry in the batch can fund a
        later debit.

        Raises:
            AccountNotFound: If any account doesn't exist
            InactiveAccount: If any account is inactive
            InsufficientBalance: If any debit would overdraw its account
        """
        if not entries:
            return []

        results: list[LedgerEntry] = []

        with transaction.atomic():
            account_ids: set[uuid.UUID] = set()
            for params in entries:
                account_ids.add(params.debit_account_id)
                account_ids.add(params.credit_account_id)

            # Lock in a consistent order so concurrent batches can't deadlock
            accounts = {
                acc.id: acc
                for acc in LedgerAccount.objects.filter(id__in=account_ids)
                .select_for_update()
                .order_by("id")
            }

            for account_id in account_ids:
                if account_id not in accounts:
                    raise AccountNotFound(
                        f"Account {account_id} not found",
                        details={"account_id": str(account_id)},
                    )

            for params in entries:
                existing = LedgerEntry.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    results.append(existing)
                    continue

                debit_account = accounts[params.debit_account_id]
                credit_account = accounts[params.credit_account_id]
                LedgerService._validate_debit(debit_account, params.amount_cents)
                LedgerService._validate_credit(credit_account)

                try:
                    with transaction.atomic():
                        entry = LedgerEntry.objects.create(
                            idempotency_key=params.idempotency_key,
                            debit_account=debit_account,
                            credit_account=credit_account,
                            amount_cents=params.amount_cents,
                            currency=debit_account.currency,
                            entry_type=params.entry_type,
                            reference_id=params.reference_id,
                            reference_type=params.reference_type,
                            description=params.description,
                            metadata=params.metadata or {},
                            created_by=params.created_by,
                        )
                except IntegrityError:
                    # Another process recorded the same key between check and create
                    results.append(
                        LedgerEntry.objects.get(idempotency_key=params.idempotency_key)
                    )
                    continue

                LedgerService._apply_delta(debit_account, -params.amount_cents)
                LedgerService._apply_delta(credit_account, params.amount_cents)

                logger.info(
                    "Ledger entry recorded",
                    extra={
                        "entry_id": str(entry.id),
                        "entry_type": entry.entry_type,
                        "amount_cents": entry.amount_cents,
                        "idempotency_key": entry.idempotency_key,
                    },
                )
                results.append(entry)

        return results

    @staticmethod
    def _validate_debit(account: LedgerAccount, amount_cents: int) -> None:
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )
        if not account.allow_negative and account.balance_cents < amount_cents:
            raise InsufficientBalance(
                account_id=account.id,
                required=amount_cents,
                available=account.balance_cents,
            )

    @staticmethod
    def _validate_credit(account: LedgerAccount) -> None:
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )

    @staticmethod
    def _apply_delta(account: LedgerAccount, delta_cents: int) -> None:
        """Move a balance in SQL and mirror the change on the locked instance."""
        LedgerAccount.objects.filter(pk=account.pk).update(
            balance_cents=F("balance_cents") + delta_cents
        )
        account.balance_cents += delta_cents

    @staticmethod
    def get_balance(account_id: uuid.UUID) -> Money:
        account = LedgerService.get_account(account_id)
        return Money(cents=account.balance_cents, currency=account.currency)

    @staticmethod
    def verify_balance(account_id: uuid.UUID) -> bool:
        """Check the stored balance against the balance recomputed from entries."""
        account = LedgerService.get_account(account_id)
        computed = account.get_balance()
        if computed != account.balance_cents:
            logger.error(
                "Ledger balance drift detected",
                extra={
                    "account_id": str(account_id),
                    "stored_cents": account.balance_cents,
                    "computed_cents": computed,
                },
            )
            return False
        return True

