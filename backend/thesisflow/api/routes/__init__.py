from fastapi import APIRouter

from thesisflow.api.routes import funnel, health, sections, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(funnel.router, prefix="/funnel", tags=["funnel"])
api_router.include_router(sections.router, prefix="/sections", tags=["sections"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
