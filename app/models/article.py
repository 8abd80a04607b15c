"""
Insight article model and stored-document conversion helpers
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from app.utils.slug import slugify
from app.utils.text import parse_date

logger = logging.getLogger(__name__)


class ArticleStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class Article(BaseModel):
    id: str
    title: str
    excerpt: str = ""
    body: str = ""
    image: str = ""
    slug: str
    date: str = ""
    featured: bool = False
    status: ArticleStatus = ArticleStatus.DRAFT
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    url: str = ""

    # keys added by hand in the repository file survive a round-trip
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def is_published(self) -> bool:
        return self.status == ArticleStatus.PUBLISHED


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def article_url(slug: str) -> str:
    return f"/insight/{slug}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _legacy_id(title: str, created: Any) -> str:
    # stable across reads so public clients see the same id until the next write
    return uuid.uuid5(uuid.NAMESPACE_URL, f"{title}|{created}").hex


def document_to_article(doc: Dict[str, Any]) -> Article:
    """Build an Article from a stored record, filling what older records lack"""
    data = dict(doc)
    now = utc_now()

    title = str(data.get("title") or "").strip() or "Untitled"
    data["title"] = title
    data["excerpt"] = str(data.get("excerpt") or "")
    data["body"] = str(data.get("body") or "")
    data["image"] = str(data.get("image") or "")
    data["featured"] = bool(data.get("featured") or False)

    raw_created = data.get("createdAt")
    created = _as_utc(parse_date(raw_created)) or now
    updated = _as_utc(parse_date(data.get("updatedAt"))) or created
    data["createdAt"] = created
    data["updatedAt"] = updated

    if not data.get("id"):
        data["id"] = _legacy_id(title, raw_created)
    else:
        data["id"] = str(data["id"])

    slug = str(data.get("slug") or "").strip() or slugify(title)
    data["slug"] = slug
    data["date"] = str(data.get("date") or "") or created.date().isoformat()
    data["url"] = str(data.get("url") or "") or article_url(slug)

    status = data.get("status")
    if status not in {s.value for s in ArticleStatus}:
        if status:
            logger.warning("Insight %s has unknown status %r, treating as draft", data["id"], status)
        data["status"] = ArticleStatus.DRAFT.value

    return Article.model_validate(data)


def documents_to_articles(docs: List[Any]) -> List[Article]:
    articles = []
    for position, doc in enumerate(docs):
        if not isinstance(doc, dict):
            logger.warning("Skipping insights entry %d: expected an object, got %s",
                           position, type(doc).__name__)
            continue
        articles.append(document_to_article(doc))
    return articles


def article_to_document(article: Article) -> Dict[str, Any]:
    return article.model_dump(by_alias=True, mode="json")


def publication_sort_key(article: Article) -> datetime:
    """Logical publication date, falling back to creation time"""
    published = _as_utc(parse_date(article.date)) or _as_utc(article.created_at)
    return published or datetime.min.replace(tzinfo=timezone.utc)


def sort_newest_first(articles: List[Article]) -> List[Article]:
    return sorted(articles, key=publication_sort_key, reverse=True)
