from dataclasses import dataclass, fields
from typing import Mapping, Optional

MAX_FREE_TEXT_LENGTH = 100

# attribute name -> query string parameter
QUERY_PARAMETERS = {
    "skip": "skip",
    "limit": "limit",
    "search": "search",
    "sort": "sort",
    "fields": "fields",
    "price_low": "price_low",
    "price_high": "price_high",
    "page": "page",
    "brand": "brand",
    "deals": "deals",
    "sort_by": "sortBy",
    "discount_low": "discount_low",
    "discount_high": "discount_high",
    "product": "product",
    "reviews": "reviews",
}

FREE_TEXT_PARAMETERS = {"search", "brand"}


@dataclass
class QueryDescriptor:
    """Recognised list parameters of a request.

    Values stay raw strings: they are untrusted and only become numbers once
    the pipeline builder or the page-bounds resolver sanitises them.
    ``limit`` is rewritten in place to the normalised page size.
    """

    skip: Optional[str] = None
    limit: Optional[str] = None
    search: Optional[str] = None
    sort: Optional[str] = None
    fields: Optional[str] = None
    price_low: Optional[str] = None
    price_high: Optional[str] = None
    page: Optional[str] = None
    brand: Optional[str] = None
    deals: Optional[str] = None
    sort_by: Optional[str] = None
    discount_low: Optional[str] = None
    discount_high: Optional[str] = None
    product: Optional[str] = None
    reviews: Optional[str] = None

    @classmethod
    def from_args(cls, args: Optional[Mapping]) -> "QueryDescriptor":
        values = {}
        for attribute, parameter in QUERY_PARAMETERS.items():
            raw_value = (args or {}).get(parameter)
            if raw_value is None:
                continue
            cleaned = str(raw_value).strip()
            if not cleaned:
                continue
            if attribute in FREE_TEXT_PARAMETERS:
                cleaned = cleaned[:MAX_FREE_TEXT_LENGTH]
            values[attribute] = cleaned
        return cls(**values)

    @property
    def wants_deals(self) -> bool:
        return (self.deals or "").lower() == "true"

    @property
    def wants_reviews(self) -> bool:
        return (self.reviews or "").lower() == "true"

    @property
    def has_discount_bounds(self) -> bool:
        return self.discount_low is not None or self.discount_high is not None

    def as_dict(self):
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not None
        }
