"""
Runtime config routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import API_V1_PREFIX
from queuectl.db import get_async_session
from queuectl.db.config_repository import ConfigRepository
from queuectl.types.api import ConfigEntryResponse, ConfigValueRequest

router = APIRouter(prefix=f"{API_V1_PREFIX}/config", tags=["Config"])


@router.get(
    "",
    response_model=dict[str, str],
    summary="List config values",
)
async def list_config(
    session: AsyncSession = Depends(get_async_session),
) -> dict[str, str]:
    """List all config values."""
    return await ConfigRepository(session).list_all()


@router.get(
    "/{key}",
    response_model=ConfigEntryResponse,
    summary="Get a config value",
)
async def get_config(
    key: str,
    session: AsyncSession = Depends(get_async_session),
) -> ConfigEntryResponse:
    """
    Get a config value.

    Raises:
        HTTPException: If the key is not set.
    """
    value = await ConfigRepository(session).get(key)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Config key '{key}' not set",
        )
    return ConfigEntryResponse(key=key, value=value)


@router.put(
    "/{key}",
    response_model=ConfigEntryResponse,
    summary="Set a config value",
    description="Set a config value such as backoff_base, base_delay_seconds or max_retries.",
)
async def set_config(
    key: str,
    request: ConfigValueRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ConfigEntryResponse:
    """Set a config value. Unknown keys are stored but have no effect."""
    entry = await ConfigRepository(session).set(key, request.value)
    await session.commit()
    return ConfigEntryResponse(key=entry.key, value=entry.value)
