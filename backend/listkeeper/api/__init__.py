"""API router package."""

from fastapi import APIRouter

from listkeeper.api.v1 import admin, health, lists, sync, tasks, users

router = APIRouter()

# Include all API routers
router.include_router(health.router, tags=["Health"])
router.include_router(sync.router, tags=["Sync"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(lists.router, prefix="/lists", tags=["Lists"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(admin.router, prefix="/admin", tags=["Admin"])
