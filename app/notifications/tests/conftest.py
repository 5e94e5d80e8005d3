"""
Test configuration and fixtures for notification tests.

Usage:
    def test_example(user, unread_notification, authenticated_client):
        response = authenticated_client.get('/api/v1/notifications/')
        assert response.status_code == 200
"""

import pytest

from bookings.tests.factories import UserFactory
from notifications.tests.factories import NotificationFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def other_user(db):
    return UserFactory()


@pytest.fixture
def authenticated_client(authenticated_client_factory, user):
    return authenticated_client_factory(user)


# =============================================================================
# Notification Fixtures
# =============================================================================


@pytest.fixture
def unread_notification(user):
    return NotificationFactory(recipient=user, is_read=False)


@pytest.fixture
def read_notification(user):
    return NotificationFactory(recipient=user, is_read=True)


@pytest.fixture
def other_user_notifications(other_user):
    return NotificationFactory.create_batch(2, recipient=other_user)
