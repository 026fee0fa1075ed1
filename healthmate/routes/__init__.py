from healthmate.routes.auth import router as auth_router
from healthmate.routes.chat import router as chat_router
from healthmate.routes.reports import router as reports_router

__all__ = ["auth_router", "chat_router", "reports_router"]
