"""
Trip-related enumerations.
"""

import enum


class TripType(str, enum.Enum):
    """Direction of travel relative to the border crossing."""
    ARRIVAL = "ARRIVAL"  # Passengers are dropped off along the way
    DEPARTURE = "DEPARTURE"  # Passengers are picked up along the way


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    ARRIVED = "ARRIVED"
    COMPLETED = "COMPLETED"


TERMINAL_TRIP_STATUSES = {TripStatus.ARRIVED, TripStatus.COMPLETED}


class StopKind(str, enum.Enum):
    """Which passenger operations a stop supports."""
    PICKUP = "PICKUP"
    DROPOFF = "DROPOFF"
    BOTH = "BOTH"


class BookingStatus(str, enum.Enum):
    """Booking status enumeration."""
    PENDING_APPROVAL = "PENDING_APPROVAL"  # Booked by the passenger, awaiting staff review
    CONFIRMED = "CONFIRMED"  # Booked or confirmed by staff, awaiting travel
    ARRIVED = "ARRIVED"
    COMPLETED = "COMPLETED"


TERMINAL_BOOKING_STATUSES = {BookingStatus.ARRIVED, BookingStatus.COMPLETED}
