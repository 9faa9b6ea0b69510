"""Literature search service.

Semantic, keyword and hybrid search over a tenant's articles, plus cached
related-article lists. ``SearchManager.search`` is the single entry point;
``search_service.main`` exposes it over HTTP.
"""
