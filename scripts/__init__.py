"""Operational scripts for the literature search service.

Scripts include:
- ``init_db.py``: create the pgvector collection and the related-article cache table.
"""
