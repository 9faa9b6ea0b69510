"""SQL repositories over the article database."""

from .articles import ArticleRepository
from .provider_settings import ProviderConfig, ProviderSettingsRepository
from .related_cache import RelatedCacheRepository

__all__ = [
    "ArticleRepository",
    "ProviderConfig",
    "ProviderSettingsRepository",
    "RelatedCacheRepository",
]
