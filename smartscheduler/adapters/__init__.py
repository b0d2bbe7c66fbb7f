"""
Adapters layer - Booking persistence.
"""

from .booking_store import InMemoryBookingStore

__all__ = ["InMemoryBookingStore"]
