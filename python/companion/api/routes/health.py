"""Health check endpoints."""

from fastapi import APIRouter

from companion.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check endpoint.

    Returns 200 if the process is running. Does not touch the database or
    the realtime broker.
    """
    return success_response({"status": "ok"})
