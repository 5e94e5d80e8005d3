"""
Payment services.

Import services from their modules so that loading one service does not
load the others:

    from payments.services.reconciliation_service import ReconciliationService
    from payments.services.escrow_settlement import EscrowSettlementService
    from payments.services.refund_service import RefundService
    from payments.services.recurring_billing import RecurringBillingService

Pure policy modules (refund_eligibility, retry_scheduler) have no database
access and can be used anywhere.
"""
