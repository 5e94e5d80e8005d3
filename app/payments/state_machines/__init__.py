"""
State machine enums and transition logic for payment models.

states: TextChoices used by the django-fsm fields on the payment models.
reconciliation: the pure PaymentRecord transition function, imported
directly as payments.state_machines.reconciliation.
"""

from payments.state_machines.states import (
    CancellingParty,
    ChargeFailureCode,
    EscrowHoldStatus,
    PaymentRecordStatus,
    PayoutStatus,
    RefundRequestStatus,
)

__all__ = [
    "CancellingParty",
    "ChargeFailureCode",
    "EscrowHoldStatus",
    "PaymentRecordStatus",
    "PayoutStatus",
    "RefundRequestStatus",
]
