"""Tests for the literature search service.

Everything here runs against in-memory fakes from ``conftest.py``; no
PostgreSQL, vector store or provider endpoint is needed.
"""
