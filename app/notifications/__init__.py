"""
Notifications app for in-app payment notifications.

This app provides:
- Notification model for storing user notifications
- NotificationService for notification creation and read state
- REST API for listing notifications and marking them read

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        notification_type=NotificationType.EARLY_PAYOUT_APPROVED,
        title="Early Payout Approved",
        body="$85.00 has been added to your wallet.",
    )
"""
