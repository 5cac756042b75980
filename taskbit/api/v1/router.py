from fastapi import APIRouter
from taskbit.api.v1.routes import projects, time_entries, invoices, clients, portal, billing, dashboard, account, webhooks

api_router = APIRouter()

api_router.include_router(projects.router, prefix="/projects", tags=["projects"])
api_router.include_router(time_entries.router, prefix="/time-entries", tags=["time-entries"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(portal.router, prefix="/portal", tags=["portal"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(account.router, prefix="/account", tags=["account"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
