from .keyword import KeywordRetriever, score_title
from .semantic import SemanticRetriever

__all__ = ["KeywordRetriever", "SemanticRetriever", "score_title"]
