"""
Bookings app configuration.

Holds the booking-side records the payments core reads and nudges:
bookings, recurring agreements and disputes.
"""

from django.apps import AppConfig


class BookingsConfig(AppConfig):
    """Configuration for the bookings application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "bookings"
    verbose_name = "Bookings"
