"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps. Nothing in here knows
about payments, bookings or notifications.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - MetadataMixin: Flexible JSON metadata storage

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, PermissionDeniedError,
      ConflictError, ExternalServiceError

Resilience (import from core.circuit_breaker):
    - CircuitBreaker: Cache-backed circuit breaker for external calls
    - CircuitOpenError: Raised when calling through an open circuit

Views (import from core.views):
    - health_check: Database and cache health endpoint
"""
