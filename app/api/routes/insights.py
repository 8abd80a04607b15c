"""Insights API routes: public reads and the admin write endpoint"""

import logging
from typing import List
from urllib.parse import urljoin

from fastapi import APIRouter, Depends, Response, status

from app.config import settings
from app.dependencies import get_store, require_admin
from app.exceptions import ValidationError
from app.models.article import Article, article_url
from app.schemas.insight import (
    InsightAction,
    InsightPageResponse,
    InsightRequest,
    InsightResponse,
    PageMeta,
)
from app.services.article_store import ArticleStore, MutationResult
from app.utils.text import html_to_text, truncate_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Insights"])

PAGE_CACHE_CONTROL = "public, max-age=3600"
DESCRIPTION_LIMIT = 160


def _page_meta(article: Article) -> PageMeta:
    description = article.excerpt or html_to_text(article.body)
    site = settings.SITE_URL.rstrip("/") + "/"
    image = article.image or settings.DEFAULT_INSIGHT_IMAGE
    if not image.startswith("data:"):
        image = urljoin(site, image)
    return PageMeta(
        title=article.title,
        description=truncate_text(description, DESCRIPTION_LIMIT, suffix=""),
        canonical_url=urljoin(site, article_url(article.slug).lstrip("/")),
        image=image,
    )


def _mutation_response(result: MutationResult) -> InsightResponse:
    return InsightResponse(
        success=True,
        data=result.article,
        insights=result.insights,
        count=len(result.insights),
    )


@router.get("/get-insights", response_model=List[Article])
async def list_published_insights(store: ArticleStore = Depends(get_store)):
    """Published insights, newest first. Anonymous, CORS-enabled."""
    return await store.list_published()


@router.get("/insights/{slug}", response_model=InsightPageResponse)
async def get_insight_page(
    slug: str, response: Response, store: ArticleStore = Depends(get_store)
):
    """Data for one public insight page, looked up by slug only"""
    article = await store.get_by_slug(slug, published_only=True)
    response.headers["Cache-Control"] = PAGE_CACHE_CONTROL
    return InsightPageResponse(insight=article, meta=_page_meta(article))


@router.post(
    "/insights",
    response_model=InsightResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def manage_insights(
    payload: InsightRequest, store: ArticleStore = Depends(get_store)
):
    """Admin editor endpoint: get/add/edit/delete by action.

    Positions in ``insights`` are the stored order, which is what ``index``
    refers to on edit and delete.
    """
    if payload.action == InsightAction.GET:
        insights = await store.list()
        return InsightResponse(success=True, insights=insights, count=len(insights))

    if payload.action == InsightAction.ADD:
        if payload.insight is None:
            raise ValidationError("Insight data required", field="insight")
        return _mutation_response(await store.add(payload.insight))

    if payload.index is None:
        raise ValidationError(f"Index is required for {payload.action.value}", field="index")

    if payload.action == InsightAction.EDIT:
        if payload.insight is None:
            raise ValidationError("Insight data required", field="insight")
        return _mutation_response(await store.edit(payload.index, payload.insight))

    return _mutation_response(await store.delete(payload.index))
