from .client import AQL_PATH, AqlClient, AqlItem
from .queries import folder_contents_query, paginate, rfc3339, time_window_query

__all__ = [
    "AQL_PATH",
    "AqlClient",
    "AqlItem",
    "folder_contents_query",
    "paginate",
    "rfc3339",
    "time_window_query",
]
