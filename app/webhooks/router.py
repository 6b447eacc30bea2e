# app/webhooks/router.py
from fastapi import APIRouter

from app.webhooks import calendar_handler

webhook_router = APIRouter()
webhook_router.include_router(calendar_handler.router, prefix="/calendar")


@webhook_router.get("/")
async def webhook_info():
    return {
        "endpoints": {
            "google_calendar": "/webhooks/calendar/google",
        },
        "note": "Google Calendar sends channel notifications here; the body is empty and state is in X-Goog-* headers"
    }
