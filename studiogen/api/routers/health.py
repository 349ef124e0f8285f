"""Health check router."""

from fastapi import APIRouter

from studiogen.config import VERSION, settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Report liveness and which proxy backends have server-side keys."""
    return {
        "status": "ok",
        "providers": {
            "openai": bool(settings.OPENAI_API_KEY),
            "deepseek": bool(settings.DEEPSEEK_API_KEY),
        },
    }


@router.get("/health/version")
async def health_version() -> dict:
    return {"version": VERSION}
