"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from triptrack.app.api.v1.endpoints import (
    routes, trips, bookings,
    driver_location, tracking, share
)

router = APIRouter()

# Topology and scheduling (staff)
router.include_router(routes.router)
router.include_router(trips.router)

# Bookings
router.include_router(bookings.router)

# Driver location ingestion
router.include_router(driver_location.router)

# Live tracking
router.include_router(tracking.router)
router.include_router(tracking.driver_router)
router.include_router(share.router)
