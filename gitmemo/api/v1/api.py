from fastapi import APIRouter
from gitmemo.api.v1.endpoints import auth, config, github, health, issues, labels, sync, webhook

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(health.router)
api_router.include_router(config.router)
api_router.include_router(auth.router)
api_router.include_router(issues.router)
api_router.include_router(labels.router)
api_router.include_router(sync.router)
api_router.include_router(github.router)
api_router.include_router(webhook.router)
