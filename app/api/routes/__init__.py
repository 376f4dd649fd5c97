from fastapi import APIRouter

from app.api.routes import cron, health, orders_admin, stripe_webhook, webhook_diagnosis, zapier_admin

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(stripe_webhook.router, tags=["stripe"])
api_router.include_router(zapier_admin.router)
api_router.include_router(orders_admin.router)
api_router.include_router(webhook_diagnosis.router)
api_router.include_router(cron.router)
