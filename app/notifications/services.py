"""
Notification service layer.

Services:
    NotificationService: Notification creation and read status management

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Idempotency keys make repeated sends return DUPLICATE instead of
      creating a second notification

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        notification_type=NotificationType.PAYMENT_FAILED,
        title="Recurring Payment Failed",
        body="Your recurring booking payment could not be processed ...",
        reference_id=record.id,
        idempotency_key=f"payment_failed:{record.id}:{record.attempt_count}",
    )

    result = NotificationService.mark_as_read(notification, user)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult
from notifications.models import Notification, NotificationType

if TYPE_CHECKING:
    import uuid


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        create_notification: Store a new notification
        mark_as_read: Mark a single notification as read
    """

    @classmethod
    def create_notification(
        cls,
        recipient,
        title: str,
        body: str = "",
        notification_type: str = NotificationType.SYSTEM,
        data: dict | None = None,
        reference_id: uuid.UUID | str | None = None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[Notification]:
        """
        Create a new notification for a user.

        Returns:
            ServiceResult with created Notification if successful

        Error codes:
            DUPLICATE: Notification with this idempotency_key already exists
        """
        if idempotency_key and Notification.objects.filter(
            idempotency_key=idempotency_key
        ).exists():
            cls.get_logger().info(
                "Duplicate notification prevented",
                extra={"idempotency_key": idempotency_key},
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    notification_type=notification_type,
                    title=title,
                    body=body,
                    data=data or {},
                    reference_id=str(reference_id) if reference_id else None,
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            # Lost a race with a concurrent send of the same key
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        cls.get_logger().info(
            "Notification created",
            extra={
                "notification_id": notification.id,
                "notification_type": notification_type,
                "recipient_id": recipient.pk,
            },
        )
        return ServiceResult.success(notification)

    @classmethod
    def mark_as_read(cls, notification: Notification, user) -> ServiceResult[Notification]:
        """
        Mark a single notification as read.

        Idempotent - marking an already-read notification succeeds.

        Error codes:
            NOT_OWNER: User doesn't own the notification
        """
        if notification.recipient_id != user.pk:
            cls.get_logger().warning(
                f"User {user.pk} attempted to mark notification {notification.id} "
                f"owned by user {notification.recipient_id}"
            )
            return ServiceResult.failure(
                "Cannot mark notification you don't own",
                error_code="NOT_OWNER",
            )

        notification.mark_read()
        return ServiceResult.success(notification)
