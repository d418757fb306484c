"""Composable aggregation pipelines for the list endpoints.

``Pipeline`` is an immutable sequence of stages: every stage method returns
a new pipeline, so the count branch taken before pagination can never see
the ``$skip``/``$limit`` stages appended afterwards. ``AggregateApi`` wraps a
working pipeline together with the request's query descriptor and exposes
the chainable projection, sort, join and pagination steps shared by every
resource.
"""

import math
import sys
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .page_info import DEFAULT_PAGE_LIMIT, PageInfo, count_total_pages, resolve_page_info
from .query_params import QueryDescriptor

VERSION_FIELD = "__v"
ID_FIELD = "_id"
COUNT_FIELD = "records_count"
MAX_RANGE_VALUE = sys.float_info.max

PAGINATION_OPERATORS = ("$skip", "$limit")


class PipelineOrderError(RuntimeError):
    """Raised when a count branch is requested from a paginated pipeline."""


class Pipeline:
    def __init__(self, stages: Iterable[Dict] = ()):
        self._stages: Tuple[Dict, ...] = tuple(stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self):
        return iter(self._stages)

    def __repr__(self) -> str:
        return f"Pipeline({list(self._stages)!r})"

    @property
    def stages(self) -> List[Dict]:
        return list(self._stages)

    @property
    def is_paginated(self) -> bool:
        return any(
            operator in stage for stage in self._stages for operator in PAGINATION_OPERATORS
        )

    def append(self, *stages: Dict) -> "Pipeline":
        return Pipeline(self._stages + tuple(stages))

    def match(self, criteria: Dict) -> "Pipeline":
        return self.append({"$match": criteria})

    def project(self, projection: Dict) -> "Pipeline":
        return self.append({"$project": projection})

    def add_fields(self, computed: Dict) -> "Pipeline":
        return self.append({"$addFields": computed})

    def sort(self, order: Dict[str, int]) -> "Pipeline":
        return self.append({"$sort": dict(order)})

    def skip(self, amount: int) -> "Pipeline":
        return self.append({"$skip": amount})

    def limit(self, amount: int) -> "Pipeline":
        return self.append({"$limit": amount})

    def lookup(self, options: Dict) -> "Pipeline":
        return self.append({"$lookup": options})

    def group(self, grouping: Dict) -> "Pipeline":
        return self.append({"$group": grouping})

    def count(self, field: str = COUNT_FIELD) -> "Pipeline":
        if self.is_paginated:
            raise PipelineOrderError(
                "Count branches must be derived before $skip/$limit stages are added."
            )
        return self.append({"$count": field})


def parse_field_list(raw_value: Optional[str]) -> List[str]:
    if not raw_value:
        return []
    cleaned = "".join(str(raw_value).split()).replace("undefined", "")
    return [entry for entry in cleaned.split(",") if entry]


def build_projection(raw_fields: Optional[str]) -> Optional[Dict[str, int]]:
    """Map a comma separated include/exclude list onto a ``$project`` document.

    Returns ``None`` when the list is empty or mixes inclusions and
    exclusions. ``-_id`` is accepted inside an inclusion list.
    """
    selection = parse_field_list(raw_fields)
    if not selection:
        return None
    if any(not entry.lstrip("-") for entry in selection):
        return None

    if selection[0].startswith("-"):
        if not all(entry.startswith("-") for entry in selection):
            return None
    elif not all(
        not entry.startswith("-") or entry == f"-{ID_FIELD}" for entry in selection
    ):
        return None

    projection: Dict[str, int] = {}
    for entry in selection:
        if entry.startswith("-"):
            projection[entry[1:]] = 0
        else:
            projection[entry] = 1
    return projection


def build_sort_order(raw_sort: Optional[str]) -> Dict[str, int]:
    order: Dict[str, int] = {}
    for entry in parse_field_list(raw_sort):
        if entry.startswith("-"):
            name, direction = entry[1:], -1
        else:
            name, direction = entry.lstrip("+"), 1
        if name:
            order[name] = direction
    return order


def parse_number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isfinite(numeric):
        return numeric
    return None


def resolve_range(low, high) -> Tuple[float, float]:
    """Clamp untrusted range bounds: 0 for a bad low, max value for a bad high."""
    low_value = parse_number(low)
    if low_value is None or low_value < 0:
        low_value = 0.0
    high_value = parse_number(high)
    if high_value is None or high_value < low_value:
        high_value = MAX_RANGE_VALUE
    return low_value, high_value


def collapse_lookup(documents: Sequence[Dict], *fields: str) -> Sequence[Dict]:
    """Turn joined arrays into a single nested document (or ``None``)."""
    for document in documents:
        for field in fields:
            joined = document.get(field)
            if isinstance(joined, list):
                document[field] = joined[0] if joined else None
            elif field not in document:
                document[field] = None
    return documents


def build_envelope(
    resource: str, documents: List[Dict], records_count: int, page_limit: int
) -> Dict:
    return {
        "records_count": records_count,
        "total_pages": count_total_pages(records_count, page_limit),
        "list_count": len(documents),
        resource: documents,
    }


class AggregateApi:
    def __init__(
        self,
        aggregation: Pipeline,
        query: QueryDescriptor,
        default_limit: int = DEFAULT_PAGE_LIMIT,
    ):
        self.aggregation = aggregation
        self.query = query
        self.default_limit = default_limit
        self.borrowed_fields: List[str] = []

    @property
    def pipeline(self) -> List[Dict]:
        return self.aggregation.stages

    def match(self, criteria: Dict) -> "AggregateApi":
        self.aggregation = self.aggregation.match(criteria)
        return self

    def add_fields(self, computed: Dict) -> "AggregateApi":
        self.aggregation = self.aggregation.add_fields(computed)
        return self

    def project(self, projection: Dict) -> "AggregateApi":
        self.aggregation = self.aggregation.project(projection)
        return self

    def match_range(self, field: str, low, high) -> "AggregateApi":
        if low is None and high is None:
            return self
        low_value, high_value = resolve_range(low, high)
        return self.match({field: {"$gte": low_value, "$lte": high_value}})

    def filter(self, keep: Sequence[str] = ()) -> "AggregateApi":
        """Project the requested ``fields``, hiding ``__v`` by default.

        ``keep`` names fields that later stages still read (join keys). They
        survive the projection even when ``fields`` leaves them out, and are
        listed in ``borrowed_fields`` so the caller can drop them afterwards.
        """
        projection = build_projection(self.query.fields)
        if projection is not None:
            inclusive = 1 in projection.values()
            for field in keep:
                if inclusive and field not in projection:
                    projection[field] = 1
                    self.borrowed_fields.append(field)
                elif not inclusive and field in projection:
                    del projection[field]
                    self.borrowed_fields.append(field)
        if not projection:
            projection = {VERSION_FIELD: 0}
        self.aggregation = self.aggregation.project(projection)
        return self

    def sort(self, default_field: str = "name") -> "AggregateApi":
        order = build_sort_order(self.query.sort)
        if not order:
            order = build_sort_order(default_field)
        return self.order_by(order)

    def order_by(self, order: Dict[str, int]) -> "AggregateApi":
        self.aggregation = self.aggregation.sort(order)
        return self

    def populate(
        self,
        from_collection: str,
        local_field: str,
        foreign_field: str,
        stored_as: str,
        extra_stages: Optional[Sequence[Dict]] = None,
    ) -> "AggregateApi":
        options = {
            "from": from_collection,
            "localField": local_field,
            "foreignField": foreign_field,
            "as": stored_as,
        }
        if extra_stages:
            options["pipeline"] = list(extra_stages)
        self.aggregation = self.aggregation.lookup(options)
        return self

    def paginate(self) -> "AggregateApi":
        page = self.page_info()
        self.aggregation = self.aggregation.skip(page.page_skip).limit(page.page_limit)
        return self

    def page_info(self) -> PageInfo:
        page = resolve_page_info(self.query.page, self.query.limit, self.default_limit)
        self.query.limit = str(page.page_limit)
        return page

    def count_pipeline(self) -> List[Dict]:
        return self.aggregation.count(COUNT_FIELD).stages
