"""
Editor session: the admin form's working copy of one insight.

A session is an immutable value. Every editor step returns a new session
instead of mutating shared state, so handlers and tests can build one
directly.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.exceptions import NotFoundError, ValidationError
from app.schemas.insight import InsightAction, InsightInput, InsightRequest, InsightResponse
from app.utils.slug import slugify

FORM_FIELDS = ("title", "excerpt", "body", "image", "slug", "date", "featured")


def _blank_insight() -> Dict[str, Any]:
    return {
        "title": "",
        "excerpt": "",
        "body": "",
        "image": "",
        "slug": "",
        "date": datetime.now(timezone.utc).date().isoformat(),
        "featured": False,
        "status": "draft",
    }


@dataclass(frozen=True)
class EditorSession:
    insight: Dict[str, Any] = field(default_factory=_blank_insight)
    # position in the stored collection, -1 for an unsaved insight
    index: int = -1

    @classmethod
    def new(cls) -> "EditorSession":
        return cls()

    @classmethod
    def open(cls, insights: List[Dict[str, Any]], index: int) -> "EditorSession":
        if index < 0 or index >= len(insights):
            raise NotFoundError(f"No insight at index {index}")
        return cls(insight=dict(insights[index]), index=index)

    @property
    def is_new(self) -> bool:
        return self.index < 0

    def with_changes(self, **fields: Any) -> "EditorSession":
        unknown = set(fields) - set(FORM_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown editor field(s): {', '.join(sorted(unknown))}")
        return replace(self, insight={**self.insight, **fields})

    def to_request(self, publish: bool = False) -> InsightRequest:
        """Collect the form into an admin API request"""
        title = str(self.insight.get("title") or "").strip()
        excerpt = str(self.insight.get("excerpt") or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title")
        if not excerpt:
            raise ValidationError("Excerpt is required", field="excerpt")

        slug = str(self.insight.get("slug") or "").strip() or slugify(title)
        payload = InsightInput(
            title=title,
            excerpt=excerpt,
            body=self.insight.get("body") or "",
            image=str(self.insight.get("image") or "").strip(),
            slug=slug,
            date=self.insight.get("date") or None,
            featured=bool(self.insight.get("featured")),
            status="published" if publish else "draft",
        )
        if self.is_new:
            return InsightRequest(action=InsightAction.ADD, insight=payload)
        return InsightRequest(action=InsightAction.EDIT, insight=payload, index=self.index)

    def after_save(self, request: InsightRequest, response: InsightResponse) -> "EditorSession":
        saved: Optional[Dict[str, Any]] = None
        if response.data is not None:
            saved = response.data.model_dump(by_alias=True, mode="json")
        insight = saved or {**self.insight, **request.insight.supplied()}
        if request.action == InsightAction.ADD:
            # new insights are prepended
            return EditorSession(insight=insight, index=0)
        return EditorSession(insight=insight, index=self.index)

    def after_delete(self, deleted_index: int) -> "EditorSession":
        if deleted_index == self.index:
            return EditorSession.new()
        if 0 <= deleted_index < self.index:
            return replace(self, index=self.index - 1)
        return self
