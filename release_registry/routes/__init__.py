"""HTTP routers."""

from .comments import router as comments_router
from .packages import router as packages_router
from .subscriptions import router as subscriptions_router

__all__ = ["comments_router", "packages_router", "subscriptions_router"]
