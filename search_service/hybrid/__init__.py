from .search_manager import SearchManager, validate_request

__all__ = ["SearchManager", "validate_request"]
