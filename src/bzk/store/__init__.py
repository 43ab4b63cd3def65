from .store import JobStore, SqlJobStore

__all__ = ["JobStore", "SqlJobStore"]
