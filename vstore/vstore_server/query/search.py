"""
Search query parsing and evaluation.

Query string grammar for collection searches:
    limit=<n>              page size (default/max from ApiConfig)
    skip=<n>               records to skip
    sort=<field>           ascending sort
    sort$desc=<field>      descending sort
    <field>$<op>=<value>   filter, op in eq ne gt gte lt lte in nin
    <field>=<value>        shorthand for eq
    fields=<a,b|_all>      projection

Filters and sort keys see the same full view a read returns, so
srvModified and identifier are filterable too.

Invariants:
    - Searches never return soft-deleted records
    - Records missing the sort field come last in either direction
    - Comparisons between incompatible types never match
"""

from __future__ import annotations

import json
import logging
import operator
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from ..schema import CollectionDef
from ..storage import Record
from .projection import full_view, parse_fields

logger = logging.getLogger(__name__)

# Parameters consumed by the API itself rather than treated as filters
RESERVED_PARAMS = frozenset({"limit", "skip", "sort", "sort$desc", "fields", "token", "now"})

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}
_SET_OPERATORS = ("in", "nin")


def coerce_value(raw: str) -> Any:
    """Coerce a query string value to int, float or bool where it parses."""
    if raw in ("true", "false"):
        return raw == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


@dataclass(frozen=True)
class Filter:
    """One field condition.

    Attributes:
        field_name: Field of the full view to test
        op: Operator name
        value: Coerced operand (a tuple for in/nin)
    """

    field_name: str
    op: str
    value: Any

    def matches(self, view: Mapping[str, Any]) -> bool:
        present = self.field_name in view
        actual = view.get(self.field_name)

        if self.op in _SET_OPERATORS:
            contained = present and actual in self.value
            return contained if self.op == "in" else not contained

        if not present:
            return self.op == "ne"
        try:
            return bool(_COMPARATORS[self.op](actual, self.value))
        except TypeError:
            return False


@dataclass
class SearchQuery:
    """Parsed search request."""

    filters: list[Filter] = field(default_factory=list)
    sort_field: str = "date"
    sort_desc: bool = True
    limit: int = 10
    skip: int = 0
    fields: tuple[str, ...] | None = None


def _parse_non_negative(params: Mapping[str, str], name: str, default: int) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"Parameter {name} must be an integer", field_name=name)
    if value < 0:
        raise ValidationError(f"Parameter {name} must not be negative", field_name=name)
    return value


def parse_limit(params: Mapping[str, str], default_limit: int, max_limit: int) -> int:
    """Read `limit`, capped at max_limit.

    Raises:
        ValidationError: If limit is not a positive integer
    """
    limit = _parse_non_negative(params, "limit", default_limit)
    if limit == 0:
        raise ValidationError("Parameter limit must be positive", field_name="limit")
    return min(limit, max_limit)


def parse_filter(key: str, raw_value: str) -> Filter:
    """Parse one `<field>[$<op>]=<value>` pair.

    Raises:
        ValidationError: If the operator is unknown or the field is empty
    """
    field_name, _, op = key.partition("$")
    op = op or "eq"
    if not field_name:
        raise ValidationError(f"Invalid filter parameter: {key}")
    if op in _SET_OPERATORS:
        value: Any = tuple(coerce_value(v) for v in raw_value.split("|"))
    elif op in _COMPARATORS:
        value = coerce_value(raw_value)
    else:
        raise ValidationError(f"Unsupported filter operator: {op}", field_name=field_name)
    return Filter(field_name=field_name, op=op, value=value)


def parse_search_params(
    params: Mapping[str, str],
    collection: CollectionDef,
    default_limit: int,
    max_limit: int,
) -> SearchQuery:
    """Build a SearchQuery from query string parameters.

    Args:
        params: Query parameters (single-valued)
        collection: Collection being searched
        default_limit: Limit when none is given
        max_limit: Cap for any requested limit

    Raises:
        ValidationError: On malformed limit, skip, sort or filter
    """
    limit = parse_limit(params, default_limit, max_limit)

    if "sort" in params and "sort$desc" in params:
        raise ValidationError("Use either sort or sort$desc, not both", field_name="sort")
    if params.get("sort$desc"):
        sort_field, sort_desc = params["sort$desc"], True
    elif params.get("sort"):
        sort_field, sort_desc = params["sort"], False
    else:
        sort_field, sort_desc = collection.default_sort, True

    filters = [
        parse_filter(key, value) for key, value in params.items() if key not in RESERVED_PARAMS
    ]

    return SearchQuery(
        filters=filters,
        sort_field=sort_field,
        sort_desc=sort_desc,
        limit=limit,
        skip=_parse_non_negative(params, "skip", 0),
        fields=parse_fields(params.get("fields")),
    )


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, (bool, int, float)):
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    return (2, json.dumps(value, sort_keys=True, default=str))


def run_search(records: Iterable[Record], query: SearchQuery) -> list[Record]:
    """Filter, sort and page records.

    Args:
        records: Candidate LIVE records
        query: Parsed query

    Returns:
        Matching records for the requested page
    """
    matched = []
    for record in records:
        view = full_view(record)
        if all(f.matches(view) for f in query.filters):
            matched.append((view, record))

    with_key = [(v, r) for v, r in matched if query.sort_field in v]
    without_key = [r for v, r in matched if query.sort_field not in v]
    with_key.sort(key=lambda pair: _sort_key(pair[0][query.sort_field]), reverse=query.sort_desc)

    ordered = [r for _, r in with_key] + without_key
    return ordered[query.skip : query.skip + query.limit]
