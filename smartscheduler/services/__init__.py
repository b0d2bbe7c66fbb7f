"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .booking_service import BookingConfirmation, BookingService, BookingStoreProtocol

__all__ = ["BookingConfirmation", "BookingService", "BookingStoreProtocol"]
