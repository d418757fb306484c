"""List endpoints built on the shared aggregation pipeline builder.

Every handler follows the same order: match stages, computed fields and
range filters, projection, the count branch, then sort, joins and
pagination. The count is always taken from the pipeline as it stands
before pagination, and a page past the end of the result set aborts with
404 instead of returning an empty list.
"""

import re
from typing import Dict, List, Optional

from bson import ObjectId
from flask import abort, current_app

from .aggregate_api import (
    COUNT_FIELD,
    AggregateApi,
    Pipeline,
    build_envelope,
    collapse_lookup,
)
from .page_info import is_page_out_of_range
from .query_params import QueryDescriptor
from .validators import normalize_object_id_value

CATEGORY_PAGE_LIMIT = 10

PRODUCT_SEARCH_FIELDS = ("name", "brand", "tags")
CATEGORY_SEARCH_FIELDS = ("name", "alias")
CUSTOMER_SEARCH_FIELDS = ("username", "email", "first_name", "last_name")
REVIEW_SEARCH_FIELDS = (
    "reviewer_name",
    "review_title",
    "review_description",
    "matched_product.name",
    "matched_product.brand",
    "matched_product.tags",
)

DISCOUNT_EXPRESSION = {
    "$cond": [
        {"$gt": ["$retail_price", 0]},
        {"$round": [{"$subtract": [1, {"$divide": ["$price", "$retail_price"]}]}, 2]},
        0,
    ]
}

REVIEW_GROUP_STAGE = {
    "$group": {
        "_id": "$product_id",
        "avg_rating": {"$avg": "$rating"},
        "review_count": {"$sum": 1},
    }
}

REVIEW_STATS_STAGES = [
    REVIEW_GROUP_STAGE,
    {
        "$project": {
            "_id": 0,
            "avg_rating": {"$round": ["$avg_rating", 2]},
            "review_count": 1,
        }
    },
]

# sortBy value -> review-weighted order
REVIEW_SORTS = {
    "rating": {"review_info.avg_rating": -1, "review_info.review_count": -1, "name": 1},
    "reviews": {"review_info.review_count": -1, "review_info.avg_rating": -1, "name": 1},
}


def search_regex(term: str):
    return re.compile(re.escape(term), re.IGNORECASE)


def search_criteria(term: str, search_fields) -> Dict:
    regex = search_regex(term)
    return {"$or": [{field: regex} for field in search_fields]}


def count_records(collection, api: AggregateApi) -> int:
    """Run the count branch of ``api`` (the pipeline as it is before pagination)."""
    result = list(collection.aggregate(api.count_pipeline()))
    if not result:
        return 0
    return int(result[0].get(COUNT_FIELD, 0) or 0)


def paginate_or_abort(api: AggregateApi, records_count: int):
    api.paginate()
    page = api.page_info()
    if is_page_out_of_range(page, records_count):
        current_app.logger.info(
            "Page %s is past the last record (%s records, limit %s)",
            page.page_num,
            records_count,
            page.page_limit,
        )
        abort(404)
    return page


def list_products(db, query: QueryDescriptor, category_id: Optional[ObjectId] = None) -> Dict:
    criteria = {"category": category_id} if category_id is not None else {}
    api = AggregateApi(Pipeline().match(criteria), query)

    if query.brand:
        api.match({"brand": re.compile(f"^{re.escape(query.brand)}$", re.IGNORECASE)})
    if query.search:
        api.match(search_criteria(query.search, PRODUCT_SEARCH_FIELDS))

    api.match_range("price", query.price_low, query.price_high)
    if query.wants_deals or query.has_discount_bounds:
        api.add_fields({"discount": DISCOUNT_EXPRESSION})
        api.match_range("discount", query.discount_low, query.discount_high)

    api.filter()
    records_count = count_records(db.products, api)

    review_sort = REVIEW_SORTS.get(query.sort_by or "")
    if review_sort:
        # sorting on review statistics needs them joined before the sort
        api.populate("reviews", "_id", "product_id", "review_info", REVIEW_STATS_STAGES)
        api.order_by(review_sort)
    else:
        api.sort("name")

    page = paginate_or_abort(api, records_count)

    with_reviews = bool(review_sort) or query.wants_reviews
    if with_reviews and not review_sort:
        api.populate("reviews", "_id", "product_id", "review_info", REVIEW_STATS_STAGES)

    products = list(db.products.aggregate(api.pipeline))
    if with_reviews:
        collapse_lookup(products, "review_info")

    return build_envelope("products", products, records_count, page.page_limit)


def list_categories(db, query: QueryDescriptor) -> Dict:
    api = AggregateApi(Pipeline().match({}), query, default_limit=CATEGORY_PAGE_LIMIT)
    if query.search:
        api.match(search_criteria(query.search, CATEGORY_SEARCH_FIELDS))

    api.filter()
    records_count = count_records(db.categories, api)

    api.sort("name")
    page = paginate_or_abort(api, records_count)

    categories = list(db.categories.aggregate(api.pipeline))
    return build_envelope("categories", categories, records_count, page.page_limit)


def list_reviews(db, query: QueryDescriptor, product_id: Optional[ObjectId] = None) -> Dict:
    criteria = {"product_id": product_id} if product_id is not None else {}
    api = AggregateApi(Pipeline().match(criteria), query)

    if query.search:
        search_id = normalize_object_id_value(query.search)
        if search_id is not None:
            api.match({"$or": [{"_id": search_id}, {"product_id": search_id}]})
        else:
            # product fields are only searchable once the product is joined
            api.populate("products", "product_id", "_id", "matched_product")
            api.match(search_criteria(query.search, REVIEW_SEARCH_FIELDS))
            api.project({"matched_product": 0})

    api.filter(keep=("product_id",))
    records_count = count_records(db.reviews, api)

    api.sort("-review_date")
    page = paginate_or_abort(api, records_count)
    api.populate("products", "product_id", "_id", "product")
    if api.borrowed_fields:
        api.project({field: 0 for field in api.borrowed_fields})

    reviews = collapse_lookup(list(db.reviews.aggregate(api.pipeline)), "product")
    return build_envelope("reviews", list(reviews), records_count, page.page_limit)


def list_customers(db, query: QueryDescriptor) -> Dict:
    api = AggregateApi(Pipeline().match({}), query)
    if query.search:
        api.match(search_criteria(query.search, CUSTOMER_SEARCH_FIELDS))

    api.filter()
    api.project({"password": 0})
    records_count = count_records(db.customers, api)

    api.sort("username")
    page = paginate_or_abort(api, records_count)

    customers = list(db.customers.aggregate(api.pipeline))
    return build_envelope("customers", customers, records_count, page.page_limit)


def attach_live_products(orders: List[Dict], joined_field: str = "cart_products") -> List[Dict]:
    for order in orders:
        live_products = {
            product.get("_id"): product for product in order.pop(joined_field, None) or []
        }
        for item in order.get("cart") or []:
            if isinstance(item, dict):
                item["product"] = live_products.get(item.get("_id"))
    return orders


def list_order_history(
    db, query: QueryDescriptor, customer_id: Optional[ObjectId] = None
) -> Dict:
    criteria = {"customer_id": customer_id} if customer_id is not None else {}
    api = AggregateApi(Pipeline().match(criteria), query)

    if query.product:
        product_id = normalize_object_id_value(query.product)
        if product_id is None:
            abort(404)
        api.match({"cart._id": product_id})

    api.filter()
    records_count = count_records(db.order_history, api)

    api.sort("-order_date")
    page = paginate_or_abort(api, records_count)
    api.populate("products", "cart._id", "_id", "cart_products")

    orders = attach_live_products(list(db.order_history.aggregate(api.pipeline)))
    return build_envelope("order_history", orders, records_count, page.page_limit)
