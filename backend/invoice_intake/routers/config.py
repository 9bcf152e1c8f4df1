"""Runtime config endpoint for frontend consumption."""
from __future__ import annotations

from fastapi import APIRouter

from ..config import get_settings
from ..models import Limits

router = APIRouter(tags=["config"])


@router.get("/config", response_model=Limits)
async def get_config() -> Limits:
    """Expose non-sensitive runtime limits and accepted MIME types."""
    settings = get_settings()
    return Limits(
        maxSizeMb=settings.MAX_SIZE_MB,
        maxPages=settings.MAX_PAGES,
        acceptedMime=settings.ACCEPTED_MIME,
    )
