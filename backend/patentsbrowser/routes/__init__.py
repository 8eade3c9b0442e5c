"""PatentsBrowser Routes"""

from .auth import router as auth_router
from .subscriptions import router as subscriptions_router
from .payments import router as payments_router
from .organizations import router as organizations_router
from .saved_patents import router as saved_patents_router
from .admin import router as admin_router

__all__ = [
    "auth_router",
    "subscriptions_router",
    "payments_router",
    "organizations_router",
    "saved_patents_router",
    "admin_router",
]
