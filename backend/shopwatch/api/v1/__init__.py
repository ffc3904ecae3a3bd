from fastapi import APIRouter


# unauthenticated: health, and the webhook receiver (HMAC-verified instead)
from .routes_health import router as health_router
from .webhooks_shopify import router as webhooks_router

# bearer-token protected (OPS_API_TOKEN)
from .changes import router as changes_router
from .routes_ops import router as ops_router


api_v1 = APIRouter()
api_v1.include_router(health_router)
api_v1.include_router(webhooks_router)

api_v1.include_router(changes_router)
api_v1.include_router(ops_router)
