# src/core/bookings/__init__.py
"""
Домен заявок на услуги.
"""

from src.core.bookings.models import Booking, BookingCreateDTO, ClientInfo, Location
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.bookings.state_machine import BookingStateMachine

__all__ = [
    "Booking",
    "BookingCreateDTO",
    "ClientInfo",
    "Location",
    "BookingRepository",
    "BookingService",
    "BookingStateMachine",
]
