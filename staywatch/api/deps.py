"""FastAPI dependencies."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.session import get_db
from staywatch.services.preview import PreviewService


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_registry(request: Request) -> AdapterRegistry:
    """Adapter registry built at startup."""
    return request.app.state.registry


def get_preview_service(request: Request) -> PreviewService:
    return PreviewService(get_registry(request))
