"""
Insight request/response schemas
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from app.models.article import Article, ArticleStatus


class InsightAction(str, Enum):
    GET = "get"
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


class InsightInput(BaseModel):
    """Fields an editor may send; used both as a create candidate and a patch"""

    title: Optional[str] = None
    excerpt: Optional[str] = None
    body: Optional[str] = None
    image: Optional[str] = None
    slug: Optional[str] = None
    date: Optional[str] = None
    featured: Optional[bool] = None
    status: Optional[ArticleStatus] = None

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "title": "Contract Law Basics",
                "excerpt": "An overview.",
                "body": "<p>What every founder should know...</p>",
                "image": "https://cdn.example.com/contracts.jpg",
                "slug": "",
                "date": "2024-05-01",
                "featured": False,
                "status": "draft",
            }
        },
    )

    def supplied(self) -> Dict[str, Any]:
        """Only the fields the caller actually sent"""
        return self.model_dump(exclude_unset=True)


class InsightRequest(BaseModel):
    action: InsightAction
    insight: Optional[InsightInput] = None
    index: Optional[int] = None


class InsightResponse(BaseModel):
    success: bool
    data: Optional[Article] = None
    insights: Optional[List[Article]] = None
    count: Optional[int] = None
    error: Optional[str] = None


class PageMeta(BaseModel):
    title: str
    description: str
    canonical_url: str = Field(..., alias="canonicalUrl")
    image: str

    model_config = ConfigDict(populate_by_name=True)


class InsightPageResponse(BaseModel):
    insight: Article
    meta: PageMeta


class InsightStats(BaseModel):
    total: int
    published: int
    drafts: int
    insights: List[Article]
