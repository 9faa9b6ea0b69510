"""API routes for the search service."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import search_context
from ..errors import SearchValidationError, SemanticUnavailableError
from ..hybrid.search_manager import SearchManager
from ..models import SearchMode, SearchRequest, SearchResponse
from ..refresh import RelatedRefresher

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class SearchBody(BaseModel):
    """Request body of ``POST /search``; the tenant comes from the query string."""
    mode: SearchMode = Field(SearchMode.HYBRID, description="Search mode")
    query: Optional[str] = Field(None, description="Free-text query (text modes)")
    article_id: Optional[int] = Field(None, description="Source article (related mode)")
    limit: int = Field(10, description="Maximum number of results")
    offset: int = Field(0, description="Results to skip")
    semantic_weight: float = Field(0.7, description="Weight of the semantic score in hybrid mode")
    keyword_weight: float = Field(0.3, description="Weight of the keyword score in hybrid mode")
    normalize_scores: bool = Field(True, description="Normalize semantic scores before fusion")
    use_cache: bool = Field(True, description="Serve related articles from the cache")
    refresh_cache: bool = Field(False, description="Recompute related articles")
    fallback_enabled: bool = Field(True, description="Fall back to keyword search in hybrid mode")


class RefreshItem(BaseModel):
    article_id: int
    success: bool
    error: Optional[str] = None


class RefreshResponse(BaseModel):
    """Summary of a batch refresh."""
    total: int = Field(..., description="Articles attempted")
    success: int = Field(..., description="Articles refreshed")
    failed: int = Field(..., description="Articles that failed")
    results: List[RefreshItem] = Field(default_factory=list)


class CacheStatsResponse(BaseModel):
    total: int
    fresh: int
    stale: int
    missing: int
    stale_days: int


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.runtime.search_manager


def get_refresher(request: Request) -> RelatedRefresher:
    return request.app.state.runtime.refresher


def get_config(request: Request) -> SearchConfig:
    return request.app.state.config


async def _run_search(search_manager: SearchManager, search_request: SearchRequest) -> SearchResponse:
    with search_context(search_request.tenant_id, search_request.mode.value):
        try:
            return await search_manager.search(search_request)
        except SearchValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SemanticUnavailableError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except Exception as e:
            logger.error("Search failed", error=str(e))
            raise HTTPException(status_code=500, detail=f"Search failed: {str(e)}")


@router.post("/search", response_model=SearchResponse)
async def search(
    body: SearchBody,
    tenant_id: int = Query(..., description="Tenant (user) ID"),
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Search articles in any mode."""
    search_request = SearchRequest(tenant_id=tenant_id, **body.model_dump())
    return await _run_search(search_manager, search_request)


@router.get("/articles/{article_id}/related", response_model=SearchResponse)
async def related_articles(
    article_id: int,
    tenant_id: int = Query(..., description="Tenant (user) ID"),
    limit: int = Query(5, ge=1, le=50, description="Maximum number of related articles"),
    refresh: bool = Query(False, description="Recompute instead of reading the cache"),
    search_manager: SearchManager = Depends(get_search_manager),
):
    """Related articles for one article."""
    search_request = SearchRequest(
        mode=SearchMode.RELATED,
        tenant_id=tenant_id,
        article_id=article_id,
        limit=limit,
        use_cache=not refresh,
        refresh_cache=refresh,
    )
    return await _run_search(search_manager, search_request)


@router.post("/related/refresh", response_model=RefreshResponse)
async def refresh_related(
    tenant_id: int = Query(..., description="Tenant (user) ID"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum articles to refresh"),
    stale_days: Optional[int] = Query(None, ge=0, description="Refresh caches older than this"),
    refresher: RelatedRefresher = Depends(get_refresher),
    config: SearchConfig = Depends(get_config),
):
    """Refresh stale related-article caches for a tenant."""
    with search_context(tenant_id, SearchMode.RELATED.value):
        try:
            results = await refresher.refresh_stale(
                tenant_id,
                stale_days=config.lit_refresh_stale_days if stale_days is None else stale_days,
                limit=limit or config.lit_refresh_batch_size,
            )
        except Exception as e:
            logger.error("Related refresh failed", error=str(e))
            raise HTTPException(status_code=500, detail=f"Refresh failed: {str(e)}")

    success = sum(1 for r in results if r.success)
    return RefreshResponse(
        total=len(results),
        success=success,
        failed=len(results) - success,
        results=[RefreshItem(article_id=r.article_id, success=r.success, error=r.error) for r in results],
    )


@router.get("/related/stats", response_model=CacheStatsResponse)
async def related_stats(
    tenant_id: int = Query(..., description="Tenant (user) ID"),
    refresher: RelatedRefresher = Depends(get_refresher),
    config: SearchConfig = Depends(get_config),
) -> Dict[str, Any]:
    """Freshness of the tenant's related-article caches."""
    stale_days = config.lit_refresh_stale_days
    try:
        stats = await refresher.get_stats(tenant_id, stale_days)
    except Exception as e:
        logger.error("Failed to get related cache stats", tenant_id=tenant_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to get stats: {str(e)}")

    return {**stats, "stale_days": stale_days}
