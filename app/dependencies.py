"""
FastAPI dependency injection for admin authentication and services
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import settings
from app.services.article_store import ArticleStore, get_article_store

# optional bearer that doesn't raise when missing
security_optional = HTTPBearer(auto_error=False)


def get_store() -> ArticleStore:
    """The article store used by the insight routes"""
    return get_article_store()


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional),
) -> None:
    """
    Guard the admin write API with ADMIN_API_TOKEN.

    When no token is configured the endpoint stays open.

    Raises:
        HTTPException: If a token is configured and the request lacks it
    """
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        return None

    token = credentials.credentials if credentials else ""
    if not token or not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return None
