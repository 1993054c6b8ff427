"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from roombook.api.v1 import bookings, feedback, rooms

api_router = APIRouter()

# Bookings
api_router.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])

# Rooms (availability and search)
api_router.include_router(rooms.router, prefix="/rooms", tags=["Rooms"])

# Feedback
api_router.include_router(feedback.router, prefix="/feedback", tags=["Feedback"])
