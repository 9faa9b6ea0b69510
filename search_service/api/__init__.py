"""API subpackage for the search service.

Routers expose search, related-article lookup, batch cache refresh and cache
statistics. The transport layer stays thin and delegates to ``SearchManager``
and ``RelatedRefresher``.
"""
