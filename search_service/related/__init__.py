from .engine import RelatedArticleEngine, build_query_text, select_related

__all__ = ["RelatedArticleEngine", "build_query_text", "select_related"]
