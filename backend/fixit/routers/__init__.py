"""API Routers for Fix It by Threalty."""

from fixit.routers.auth import router as auth_router
from fixit.routers.users import router as users_router
from fixit.routers.properties import router as properties_router
from fixit.routers.invites import router as invites_router
from fixit.routers.vendors import router as vendors_router
from fixit.routers.requests import router as requests_router
from fixit.routers.scheduled_maintenance import router as scheduled_maintenance_router
from fixit.routers.comments import router as comments_router
from fixit.routers.notifications import router as notifications_router
from fixit.routers.documents import router as documents_router
from fixit.routers.reports import router as reports_router
from fixit.routers.audit_logs import router as audit_logs_router
from fixit.routers.public import router as public_router

__all__ = [
    "auth_router",
    "users_router",
    "properties_router",
    "invites_router",
    "vendors_router",
    "requests_router",
    "scheduled_maintenance_router",
    "comments_router",
    "notifications_router",
    "documents_router",
    "reports_router",
    "audit_logs_router",
    "public_router",
]
