"""
API v1 Router
"""

from fastapi import APIRouter
from . import edit_requests, notifications, projects, tasks, users

router = APIRouter()

# Include resource routers
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(edit_requests.task_router, prefix="/tasks", tags=["Edit Requests"])
router.include_router(edit_requests.router, prefix="/edit-requests", tags=["Edit Requests"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/edit-requests",
            "/projects",
            "/users",
            "/notifications",
        ],
    }
