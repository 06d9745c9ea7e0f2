"""
Booking

This module provides audience bookings of environments, their target
audience and user links, conflict detection and scheduling.
"""

from convene.booking.associations import BookingAssociationRepository
from convene.booking.conflicts import ConflictDetector, overlaps, overlaps_canonical
from convene.booking.repository import AudienceBookingRepository
from convene.booking.service import BookingService

__all__ = [
    "AudienceBookingRepository",
    "BookingAssociationRepository",
    "BookingService",
    "ConflictDetector",
    "overlaps",
    "overlaps_canonical",
]
