"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Constraints and transitions on payment models
- test_state_transitions.py: Reconciliation state machine
- test_payment_record_store.py: Record storage and the claim
- test_locks.py: Distributed locks
- test_tasks.py: Celery task wiring
- test_views.py: API endpoint tests

Service tests live in payments/services/tests/.

Usage:
    pytest app/payments/tests/
    pytest app/payments/tests/test_views.py
"""
