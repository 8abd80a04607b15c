import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.dependencies import get_store, require_admin
from app.schemas.insight import InsightStats
from app.services.article_store import ArticleStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/debug", tags=["debug"], dependencies=[Depends(require_admin)])


def _ensure_debug():
    if not settings.DEBUG:
        raise HTTPException(status_code=404, detail="Debug routes disabled")


@router.get("/insights", response_model=InsightStats)
async def debug_insights(store: ArticleStore = Depends(get_store)):
    """Raw collection with status counts. Only enabled in DEBUG mode."""
    _ensure_debug()
    insights = await store.list()
    published = sum(1 for i in insights if i.is_published)
    for position, insight in enumerate(insights):
        logger.debug("Insight %d: %s [%s] %s", position, insight.title, insight.status.value, insight.slug)
    return InsightStats(
        total=len(insights),
        published=published,
        drafts=len(insights) - published,
        insights=insights,
    )


@router.get("/store")
async def debug_store(store: ArticleStore = Depends(get_store)):
    """Backend configuration and a live read. Only enabled in DEBUG mode."""
    _ensure_debug()
    info = store.file_store.describe()
    info["insights"] = len(await store.list())
    return info
