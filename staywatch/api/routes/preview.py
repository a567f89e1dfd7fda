"""Search preview route."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch.api.deps import get_database, get_preview_service
from staywatch.errors import ProfileIncompleteError, ProfileNotFoundError
from staywatch.services.preview import PreviewRequest, PreviewResponse, PreviewService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["preview"])


@router.post("/preview", response_model=PreviewResponse)
async def run_preview(
    request: PreviewRequest,
    db: AsyncSession = Depends(get_database),
    service: PreviewService = Depends(get_preview_service),
):
    """
    Run a read-only search across providers.

    Writes one audit fetch run per provider and nothing else.
    """
    try:
        return await service.run(db, request)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProfileIncompleteError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "PROFILE_INCOMPLETE", "missing": e.missing},
        )
