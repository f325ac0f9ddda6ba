from .search_run import SearchOrchestrator, SearchRun

__all__ = ["SearchOrchestrator", "SearchRun"]
