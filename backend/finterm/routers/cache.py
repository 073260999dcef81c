"""Cache management API router."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..services.freshness_cache import FreshnessCache, freshness_cache

router = APIRouter()


def get_cache() -> FreshnessCache:
    return freshness_cache


class CacheClearResponse(BaseModel):
    removed: int


@router.delete("", response_model=CacheClearResponse)
async def clear_cache(cache: FreshnessCache = Depends(get_cache)):
    """Remove every cache entry."""
    return CacheClearResponse(removed=await cache.clear())


@router.post("/clear-expired", response_model=CacheClearResponse)
async def clear_expired(cache: FreshnessCache = Depends(get_cache)):
    """Sweep expired entries now."""
    return CacheClearResponse(removed=await cache.clear_expired())


@router.delete("/{key}")
async def delete_cache_entry(key: str, cache: FreshnessCache = Depends(get_cache)):
    """Remove one entry; absent keys are not an error."""
    await cache.delete(key)
    return {"key": key, "deleted": True}
