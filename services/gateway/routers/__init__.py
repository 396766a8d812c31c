from .notifications import router as notifications_router
from .payments import router as payments_router

__all__ = [
    "notifications_router",
    "payments_router",
]
