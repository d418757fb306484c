from flask import current_app

CATEGORY_NAMES = [
    "Electronics",
    "Office Products",
    "Video Games",
    "Pet Supplies",
    "Home & Kitchen",
    "Garden & Outdoors",
    "Toys & Games",
]

# (product fields, category names)
SEED_PRODUCTS = [
    (
        {
            "name": "Playstation 5",
            "brand": "Sony",
            "price": 309.99,
            "retail_price": 399.99,
            "tags": ["console", "playstation"],
        },
        ["Electronics", "Video Games"],
    ),
    (
        {
            "name": "Nintendo 64 Console",
            "brand": "Nintendo",
            "price": 199.99,
            "retail_price": 249.99,
            "tags": ["console", "nintendo"],
        },
        ["Electronics", "Video Games"],
    ),
    (
        {
            "name": "Xbox 360",
            "brand": "Microsoft",
            "price": 199.99,
            "retail_price": 199.99,
            "tags": ["console", "xbox"],
        },
        ["Electronics", "Video Games"],
    ),
]

PRODUCT_DEFAULTS = {
    "description": "",
    "highlights": [],
    "quantity": 20,
    "total_bought": 0,
    "image_src": "",
}


def initialize_categories(db) -> int:
    created = 0
    for name in CATEGORY_NAMES:
        if db.categories.find_one({"name": name}):
            current_app.logger.info("%s already exists in the DB, moving on...", name)
            continue
        db.categories.insert_one({"name": name, "alias": ""})
        current_app.logger.info("Saved category %s", name)
        created += 1
    return created


def initialize_products(db) -> int:
    category_ids = {
        document["name"]: document["_id"]
        for document in db.categories.find({"name": {"$in": CATEGORY_NAMES}})
    }
    created = 0
    for product, category_names in SEED_PRODUCTS:
        if db.products.find_one({"name": product["name"], "brand": product["brand"]}):
            current_app.logger.info("%s already exists in the DB, moving on...", product["name"])
            continue
        document = {
            **PRODUCT_DEFAULTS,
            **product,
            "category": [category_ids[name] for name in category_names if name in category_ids],
        }
        db.products.insert_one(document)
        current_app.logger.info("Saved product %s", product["name"])
        created += 1
    return created
