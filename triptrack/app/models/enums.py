"""
User roles enumeration.

Roles carried in the JWTs issued by the auth service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Supreme user with system-level access
        STAFF: Office staff / supervisors managing routes, trips and bookings
        DRIVER: Drives trips and pushes live location
        PASSENGER: Owner of a visit request, watches its tracking view
    """
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    DRIVER = "DRIVER"
    PASSENGER = "PASSENGER"
