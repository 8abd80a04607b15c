"""
Article store: the insights collection kept as one JSON array in a remote file.

Every mutation is a single read -> mutate -> write sequence. The version
token sent with the write is the one read inside the same sequence, so a
concurrent commit makes the write fail with ConflictError instead of
silently replacing the other writer's change.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.exceptions import (
    ConflictError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.models.article import (
    Article,
    ArticleStatus,
    article_to_document,
    article_url,
    documents_to_articles,
    sort_newest_first,
    utc_now,
)
from app.schemas.insight import InsightInput
from app.services.github_service import RemoteFileStore, build_file_store
from app.utils.slug import slugify, unique_slug
from app.utils.text import parse_date

logger = logging.getLogger(__name__)

InsightFields = Union[InsightInput, Dict[str, Any], None]


@dataclass
class Snapshot:
    articles: List[Article]
    version: Optional[str]


@dataclass
class MutationResult:
    article: Article
    insights: List[Article] = field(default_factory=list)


def _input_fields(value: InsightFields) -> Dict[str, Any]:
    """Supplied, non-null editor fields as a plain dict"""
    if value is None:
        return {}
    if not isinstance(value, InsightInput):
        try:
            value = InsightInput.model_validate(value)
        except PydanticValidationError as e:
            first = e.errors()[0]
            name = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ValidationError(f"Invalid insight field {name}: {first.get('msg')}", field=name) from e
    fields = {k: v for k, v in value.supplied().items() if v is not None}
    if "date" in fields:
        if not str(fields["date"]).strip():
            del fields["date"]
        elif parse_date(fields["date"]) is None:
            raise ValidationError("Date must be an ISO 8601 date (YYYY-MM-DD)", field="date")
    return fields


def _check_publishable(title: str, excerpt: str, status: ArticleStatus) -> None:
    if not title:
        raise ValidationError("Title is required", field="title")
    if status == ArticleStatus.PUBLISHED and not excerpt:
        raise ValidationError("Excerpt is required to publish an insight", field="excerpt")


def serialize_articles(articles: List[Article]) -> str:
    # pretty-printed so the repository history stays readable
    docs = [article_to_document(a) for a in articles]
    return json.dumps(docs, indent=2, ensure_ascii=False) + "\n"


class ArticleStore:
    """CRUD over the insights document with optimistic concurrency"""

    def __init__(
        self,
        file_store: RemoteFileStore,
        conflict_retries: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.file_store = file_store
        self.conflict_retries = max(0, conflict_retries)
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self) -> Snapshot:
        """Strict read: raises UpstreamUnavailableError when data is unusable"""
        remote = await self.file_store.read_file()
        if remote is None:
            return Snapshot(articles=[], version=None)

        # an existing file always holds at least "[]"
        if not remote.content.strip():
            raise UpstreamUnavailableError("Insights file exists but returned no content")
        try:
            docs = json.loads(remote.content)
        except json.JSONDecodeError as e:
            raise UpstreamUnavailableError(f"Insights file is not valid JSON: {e}") from e
        if not isinstance(docs, list):
            raise UpstreamUnavailableError("Insights file does not contain a JSON array")

        try:
            articles = documents_to_articles(docs)
        except PydanticValidationError as e:
            raise UpstreamUnavailableError(f"Insights file has invalid records: {e}") from e
        return Snapshot(articles=articles, version=remote.version)

    async def list(self) -> List[Article]:
        """All insights in stored order; empty when the store cannot be read"""
        try:
            snapshot = await self.load()
        except UpstreamUnavailableError as e:
            logger.error("Could not load insights, serving an empty list: %s", e)
            return []
        return snapshot.articles

    async def list_published(self) -> List[Article]:
        articles = await self.list()
        return sort_newest_first([a for a in articles if a.is_published])

    async def get_by_slug(self, slug: str, published_only: bool = True) -> Article:
        snapshot = await self.load()
        for article in snapshot.articles:
            if article.slug != slug:
                continue
            if published_only and not article.is_published:
                continue
            return article
        raise NotFoundError(f"Insight '{slug}' not found")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, candidate: InsightFields) -> MutationResult:
        fields = _input_fields(candidate)
        title = str(fields.get("title") or "").strip()
        excerpt = str(fields.get("excerpt") or "").strip()
        status = fields.get("status") or ArticleStatus.DRAFT
        _check_publishable(title, excerpt, status)
        new_id = uuid.uuid4().hex

        def apply(articles: List[Article]) -> Tuple[Article, str]:
            now = self._clock()
            base = slugify(fields.get("slug") or title)
            slug = unique_slug(base, (a.slug for a in articles))
            article = Article(
                id=new_id,
                title=title,
                excerpt=excerpt,
                body=fields.get("body", ""),
                image=str(fields.get("image", "")).strip(),
                slug=slug,
                date=fields.get("date") or now.date().isoformat(),
                featured=bool(fields.get("featured", False)),
                status=status,
                created_at=now,
                updated_at=now,
                url=article_url(slug),
            )
            # newest first
            articles.insert(0, article)
            return article, f"Add insight: {title}"

        return await self._commit(apply)

    async def edit(self, position: int, patch: InsightFields) -> MutationResult:
        fields = _input_fields(patch)
        target: Dict[str, str] = {}

        def apply(articles: List[Article]) -> Tuple[Article, str]:
            idx = self._locate(articles, position, target)
            current = articles[idx]

            updates: Dict[str, Any] = {}
            for name in ("body", "date", "featured", "status"):
                if name in fields:
                    updates[name] = fields[name]
            for name in ("title", "excerpt", "image"):
                if name in fields:
                    updates[name] = str(fields[name]).strip()

            requested_slug = str(fields.get("slug") or "").strip()
            if requested_slug:
                others = (a.slug for i, a in enumerate(articles) if i != idx)
                slug = unique_slug(slugify(requested_slug), others)
                updates["slug"] = slug
                updates["url"] = article_url(slug)

            updates["updated_at"] = self._clock()
            merged = current.model_copy(update=updates)
            _check_publishable(merged.title, merged.excerpt, merged.status)

            articles[idx] = merged
            return merged, f"Update insight: {merged.title}"

        return await self._commit(apply)

    async def delete(self, position: int) -> MutationResult:
        target: Dict[str, str] = {}

        def apply(articles: List[Article]) -> Tuple[Article, str]:
            idx = self._locate(articles, position, target)
            removed = articles.pop(idx)
            return removed, f"Delete insight: {removed.title}"

        return await self._commit(apply)

    @staticmethod
    def _locate(articles: List[Article], position: int, target: Dict[str, str]) -> int:
        """Index of the record to change.

        The first attempt resolves ``position``; retries follow the record's
        id so a concurrent insert cannot shift the edit onto another record.
        """
        if "id" in target:
            for idx, article in enumerate(articles):
                if article.id == target["id"]:
                    return idx
            raise NotFoundError("Insight was removed by another writer")

        if position is None or position < 0 or position >= len(articles):
            raise NotFoundError(f"No insight at index {position}")
        target["id"] = articles[position].id
        return position

    async def _commit(
        self, apply: Callable[[List[Article]], Tuple[Article, str]]
    ) -> MutationResult:
        attempts = self.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            # re-read right before writing so the version token is fresh
            snapshot = await self.load()
            articles = snapshot.articles
            article, message = apply(articles)
            try:
                await self.file_store.write_file(
                    serialize_articles(articles), snapshot.version, message
                )
            except ConflictError:
                if attempt == attempts:
                    logger.error("Giving up on '%s' after %d conflicting attempt(s)", message, attempts)
                    raise
                logger.warning("Conflict on '%s' (attempt %d/%d), re-reading", message, attempt, attempts)
                continue
            logger.info("Committed insights change: %s", message)
            return MutationResult(article=article, insights=articles)

        raise ConflictError("Insights file kept changing during the update")


_store_instance: Optional[ArticleStore] = None


def get_article_store() -> ArticleStore:
    """Get or create the global store for the configured backend."""
    global _store_instance
    if _store_instance is None:
        _store_instance = ArticleStore(
            build_file_store(settings),
            conflict_retries=settings.STORE_CONFLICT_RETRIES,
        )
    return _store_instance
