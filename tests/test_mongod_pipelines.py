"""List handlers against a real mongod.

mongomock cannot evaluate ``$round`` or ``$lookup`` sub-pipelines, so the
discount and review-statistics stages run here on a throwaway server
started by pymongo-inmemory. Joins with both ``localField`` and
``pipeline`` need MongoDB 5.0 or newer.
"""

import os
from datetime import datetime

import pytest
from bson import ObjectId

from backend.list_handlers import list_products, list_reviews
from backend.query_params import QueryDescriptor

pymongo_inmemory = pytest.importorskip("pymongo_inmemory")

os.environ.setdefault("PYMONGOIM__MONGO_VERSION", "6.0")


@pytest.fixture(scope="module")
def mongod_client():
    try:
        client = pymongo_inmemory.MongoClient()
    except Exception as exc:  # download or startup of mongod failed
        pytest.skip(f"mongod is not available: {exc}")
    yield client
    client.close()


@pytest.fixture
def db(mongod_client):
    database = mongod_client["e_commerce_app_test"]
    yield database
    mongod_client.drop_database("e_commerce_app_test")


def add_reviews(db, product_id, *ratings):
    for day, rating in enumerate(ratings, start=1):
        db.reviews.insert_one(
            {
                "product_id": product_id,
                "reviewer": ObjectId(),
                "rating": rating,
                "review_title": f"rated {rating}",
                "review_description": "text",
                "review_date": datetime(2024, 3, day),
            }
        )


@pytest.mark.usefixtures("app_ctx")
class TestDiscounts:
    def test_deals_compute_rounded_discount(self, db, catalogue):
        envelope = list_products(db, QueryDescriptor(deals="true"))
        discounts = {product["name"]: product["discount"] for product in envelope["products"]}
        assert discounts == {
            "Desk Lamp": 0,
            "Game Boy": 0.1,
            "Monitor Stand": 0.25,
            "Nintendo 64 Console": 0.2,
            "Notebook": 0.05,
            "Pen Set": 0.25,
            "Playstation 5": 0.23,
            "Stapler": 0.17,
            "Whiteboard": 0,
            "Xbox 360": 0,
        }

    def test_discount_bounds_filter(self, db, catalogue):
        envelope = list_products(db, QueryDescriptor(discount_low="0.2"))
        assert envelope["records_count"] == 4
        assert sorted(p["name"] for p in envelope["products"]) == [
            "Monitor Stand",
            "Nintendo 64 Console",
            "Pen Set",
            "Playstation 5",
        ]

        envelope = list_products(db, QueryDescriptor(discount_low="0.2", discount_high="0.24"))
        assert [p["name"] for p in envelope["products"]] == ["Nintendo 64 Console", "Playstation 5"]

    def test_zero_retail_price_has_no_discount(self, db):
        db.products.insert_one({"name": "Freebie", "brand": "Acme", "price": 0, "retail_price": 0})
        envelope = list_products(db, QueryDescriptor(deals="true"))
        assert envelope["products"][0]["discount"] == 0

    def test_discount_filter_survives_field_selection(self, db, catalogue):
        envelope = list_products(db, QueryDescriptor(discount_low="0.25", fields="name"))
        assert envelope["records_count"] == 2
        assert set(envelope["products"][0]) == {"_id", "name"}


@pytest.mark.usefixtures("app_ctx")
class TestReviewStatistics:
    def test_review_info_after_pagination(self, db, catalogue):
        add_reviews(db, catalogue["products"]["Xbox 360"], 4, 5)
        add_reviews(db, catalogue["products"]["Stapler"], 3, 4, 4)

        envelope = list_products(db, QueryDescriptor(reviews="true"))
        review_info = {product["name"]: product["review_info"] for product in envelope["products"]}
        assert review_info["Xbox 360"] == {"avg_rating": 4.5, "review_count": 2}
        assert review_info["Stapler"] == {"avg_rating": 3.67, "review_count": 3}
        assert review_info["Desk Lamp"] is None
        assert envelope["records_count"] == 10

    def test_sort_by_rating(self, db, catalogue):
        add_reviews(db, catalogue["products"]["Stapler"], 3)
        add_reviews(db, catalogue["products"]["Xbox 360"], 4, 5)
        add_reviews(db, catalogue["products"]["Pen Set"], 5)

        envelope = list_products(db, QueryDescriptor(sort_by="rating", limit="5"))
        names = [product["name"] for product in envelope["products"]]
        assert names == ["Pen Set", "Xbox 360", "Stapler", "Desk Lamp", "Game Boy"]
        assert envelope["products"][0]["review_info"] == {"avg_rating": 5, "review_count": 1}
        assert envelope["products"][3]["review_info"] is None
        assert envelope["total_pages"] == 2

    def test_sort_by_review_count(self, db, catalogue):
        add_reviews(db, catalogue["products"]["Pen Set"], 5)
        add_reviews(db, catalogue["products"]["Stapler"], 2, 3, 1)
        add_reviews(db, catalogue["products"]["Xbox 360"], 4, 5)

        envelope = list_products(db, QueryDescriptor(sort_by="reviews", limit="3"))
        assert [p["name"] for p in envelope["products"]] == ["Stapler", "Xbox 360", "Pen Set"]

    def test_review_search_on_joined_product(self, db, catalogue):
        add_reviews(db, catalogue["products"]["Xbox 360"], 4)
        add_reviews(db, catalogue["products"]["Stapler"], 2)

        envelope = list_reviews(db, QueryDescriptor(search="microsoft"))
        assert envelope["records_count"] == 1
        review = envelope["reviews"][0]
        assert review["product"]["name"] == "Xbox 360"
        assert "matched_product" not in review
