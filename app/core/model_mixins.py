"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    MetadataMixin: Flexible JSON metadata storage

Usage:
    from core.models import BaseModel
    from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

    class PaymentRecord(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
        amount_cents = models.BigIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Payment identifiers end up in processor idempotency keys and URLs, so
    they must not reveal record counts or ordering.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Flexible JSON metadata storage.

    Usage:
        record.set_meta("manual_retries", 2, save=False)
        count = record.get_meta("manual_retries", default=0)
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Flexible key-value metadata storage",
    )

    class Meta:
        abstract = True

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def set_meta(self, key: str, value: Any, save: bool = True) -> None:
        """
        Set metadata value and optionally save.

        Args:
            key: Metadata key
            value: Value to store (must be JSON-serializable)
            save: Whether to save the model (default True)
        """
        self.metadata[key] = value
        if save:
            self.save(update_fields=["metadata", "updated_at"])

    def has_meta(self, key: str) -> bool:
        return key in self.metadata
