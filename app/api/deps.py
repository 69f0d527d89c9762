"""
API Dependencies
Services composed at startup (see app.main.lifespan) and auth helpers
"""

from fastapi import Request

from app.core.security import get_current_user, require_role
from app.db.session import get_db
from app.services.application_intake import ApplicationIntake
from app.services.delivery_queue import DeliveryQueue

__all__ = [
    "get_db",
    "get_current_user",
    "require_role",
    "get_intake",
    "get_delivery_queue",
]


def get_intake(request: Request) -> ApplicationIntake:
    """ApplicationIntake wired with the process-wide dispatcher."""
    return request.app.state.intake


def get_delivery_queue(request: Request) -> DeliveryQueue:
    return request.app.state.delivery_queue
