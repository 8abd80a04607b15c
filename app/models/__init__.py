from app.models.article import Article, ArticleStatus

__all__ = ["Article", "ArticleStatus"]
