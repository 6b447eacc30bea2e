"""
API v1 router setup
All routes require a JWT except the Google OAuth callback
"""
from fastapi import APIRouter

from app.api.v1 import calendar

api_v1_router = APIRouter()

# ============================================================================
# CALENDAR SYNC ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    calendar.router,
    prefix="/calendar",
    tags=["Calendar"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and available endpoints."""
    return {
        "version": "1.0",
        "authentication": {
            "calendar": "JWT Bearer token required (user login)",
            "calendar/google/callback": "No authentication (Google OAuth redirect)",
        }
    }
