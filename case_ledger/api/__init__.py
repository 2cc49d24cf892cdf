"""API routes for Case Ledger."""

from fastapi import APIRouter

from .accounts import clients_router, customers_router
from .archive import router as archive_router
from .audit import router as audit_router
from .auth import router as auth_router
from .cases import router as cases_router
from .cases import tasks_router
from .chat import router as chat_router
from .invoices import router as invoices_router
from .notifications import router as notifications_router
from .portal import router as portal_router
from .staff import router as staff_router

# Main API router
api_router = APIRouter()

# Auth routes (login, me)
api_router.include_router(auth_router)

# Accounts and their cases
api_router.include_router(customers_router)
api_router.include_router(clients_router)
api_router.include_router(cases_router)
api_router.include_router(tasks_router)

# Escalation output
api_router.include_router(notifications_router)

api_router.include_router(chat_router)
api_router.include_router(invoices_router)

# Client portal: admin link management plus the link-authenticated client side
api_router.include_router(portal_router)

# Admin-only surfaces
api_router.include_router(archive_router)
api_router.include_router(staff_router)
api_router.include_router(audit_router)

__all__ = ["api_router"]
