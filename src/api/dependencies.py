"""FastAPI dependency injection helpers."""

from fastapi import Request

from src.infrastructure.repositories import BookingStore
from src.services.assignment import AssignmentMatcher
from src.services.bookings import BookingService
from src.services.container import Services
from src.services.dispatch import DispatchCoordinator


def get_services(request: Request) -> Services:
    """The per-process service graph built by the app factory."""
    return request.app.state.services


def get_store(request: Request) -> BookingStore:
    return get_services(request).store


def get_booking_service(request: Request) -> BookingService:
    return get_services(request).bookings


def get_coordinator(request: Request) -> DispatchCoordinator:
    return get_services(request).coordinator


def get_matcher(request: Request) -> AssignmentMatcher:
    return get_services(request).matcher
