"""
Read-side helpers for VStore: projection, conditional reads and searches.
"""

from .conditional import ReadOutcome, datetime_to_ms, evaluate
from .projection import ALL_FIELDS, full_view, parse_fields, project
from .search import Filter, SearchQuery, parse_limit, parse_search_params, run_search

__all__ = [
    "ReadOutcome",
    "evaluate",
    "datetime_to_ms",
    "ALL_FIELDS",
    "parse_fields",
    "full_view",
    "project",
    "Filter",
    "SearchQuery",
    "parse_limit",
    "parse_search_params",
    "run_search",
]
