import math
import re
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

MIN_PRICE = 0.01
MAX_PRICE = 100000
MAX_PRODUCT_QUANTITY = 250
DEFAULT_PRODUCT_QUANTITY = 20
ALLOWED_COUNTRIES = {"US", "CA"}
ALLOWED_RATINGS = {1, 2, 3, 4, 5}

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(default, numeric)


def strict_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric) or not numeric.is_integer():
        return None
    return int(numeric)


def clean_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_price(value) -> Optional[float]:
    numeric = safe_float(value, None)
    if numeric is None or numeric < MIN_PRICE or numeric > MAX_PRICE:
        return None
    return round(numeric, 2)


def _as_list(value) -> Optional[List]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return value
    return None


def validate_product_payload(db, payload: Optional[Dict]) -> Tuple[Dict, Dict[str, str]]:
    payload = payload or {}
    errors: Dict[str, str] = {}

    name = clean_text(payload.get("name"))
    if not name:
        errors["name"] = "Provide the product name."
    brand = clean_text(payload.get("brand"))
    if not brand:
        errors["brand"] = "Provide the brand name."

    price = _parse_price(payload.get("price"))
    if price is None:
        errors["price"] = f"Price must be between {MIN_PRICE} and {MAX_PRICE}."
    retail_price = _parse_price(payload.get("retail_price"))
    if retail_price is None:
        errors["retail_price"] = f"Retail price must be between {MIN_PRICE} and {MAX_PRICE}."

    highlights = payload.get("highlights") or []
    if not isinstance(highlights, list):
        errors["highlights"] = "The highlights field must be in the correct format."
        highlights = []
    normalized_highlights = []
    for entry in highlights:
        heading = clean_text(entry.get("heading")) if isinstance(entry, dict) else ""
        overview = clean_text(entry.get("overview")) if isinstance(entry, dict) else ""
        if not heading or not overview:
            errors["highlights"] = "A highlights value is missing a heading or overview value."
            break
        normalized_highlights.append({"heading": heading, "overview": overview})

    quantity = strict_int(payload.get("quantity", DEFAULT_PRODUCT_QUANTITY))
    if quantity is None or quantity < 1 or quantity > MAX_PRODUCT_QUANTITY:
        errors["quantity"] = "Quantity must be a positive integer number."

    total_bought = strict_int(payload.get("total_bought", 0))
    if total_bought is None or total_bought < 0:
        errors["total_bought"] = "Total bought must be a positive integer number."

    raw_categories = _as_list(payload.get("category"))
    category_ids: List[ObjectId] = []
    if not raw_categories:
        errors["category"] = "Categories must include correct category Ids."
    else:
        for value in raw_categories:
            category_id = normalize_object_id_value(value)
            if category_id is None:
                errors["category"] = f"{value} is not a valid category id format."
                break
            if not db.categories.find_one({"_id": category_id}):
                errors["category"] = f"{value} is not a valid category id."
                break
            category_ids.append(category_id)

    tags = _as_list(payload.get("tags"))
    if tags is None or any(not clean_text(tag) for tag in tags):
        errors["tags"] = "Tags must be in a correct list format."
        tags = []

    document = {
        "name": name,
        "brand": brand,
        "price": price,
        "retail_price": retail_price,
        "description": clean_text(payload.get("description")),
        "highlights": normalized_highlights,
        "quantity": quantity,
        "category": category_ids,
        "total_bought": total_bought,
        "tags": [clean_text(tag) for tag in tags],
        "image_src": clean_text(payload.get("image_src")),
    }
    return document, errors


def validate_category_payload(payload: Optional[Dict]) -> Tuple[Dict, Dict[str, str]]:
    payload = payload or {}
    errors: Dict[str, str] = {}
    name = clean_text(payload.get("name"))
    if not name:
        errors["name"] = "Provide the category name."
    return {"name": name, "alias": clean_text(payload.get("alias"))}, errors


def validate_shipping_address(value) -> Tuple[Optional[Dict], Optional[str]]:
    if value is None:
        return None, None
    if not isinstance(value, dict):
        return None, "Shipping address must be an object."

    address = value.get("address") if isinstance(value.get("address"), dict) else {}
    normalized = {
        "name": clean_text(value.get("name")),
        "phone": clean_text(value.get("phone")),
        "address": {
            "line1": clean_text(address.get("line1")),
            "line2": clean_text(address.get("line2")),
            "city": clean_text(address.get("city")),
            "state": clean_text(address.get("state")),
            "postal_code": clean_text(address.get("postal_code")),
            "country": clean_text(address.get("country")).upper(),
        },
    }
    if len(normalized["address"]["line1"]) < 2:
        return None, "Shipping address line 1 must be provided."
    if len(normalized["address"]["city"]) < 2:
        return None, "Shipping address city must be provided."
    if len(normalized["address"]["state"]) < 2:
        return None, "Shipping address state must be at least 2 characters long."
    if not normalized["address"]["postal_code"]:
        return None, "Shipping postal code must be provided."
    if normalized["address"]["country"] not in ALLOWED_COUNTRIES:
        return None, "Shipping address country must be either 'US' or 'CA'."
    return normalized, None


def validate_customer_payload(payload: Optional[Dict]) -> Tuple[Dict, Dict[str, str]]:
    payload = payload or {}
    errors: Dict[str, str] = {}

    username = clean_text(payload.get("username")).lower()
    if not 3 <= len(username) <= 16:
        errors["username"] = "Username must be between 3 and 16 characters long."
    email = normalize_email(payload.get("email"))
    if not email_regex.match(email):
        errors["email"] = "Provide a valid email address."
    password = str(payload.get("password") or "")
    if len(password) < 5:
        errors["password"] = "Password must be at least 5 characters long."
    first_name = clean_text(payload.get("first_name")).lower()
    if len(first_name) < 2:
        errors["first_name"] = "First name must be at least 2 characters long."
    last_name = clean_text(payload.get("last_name")).lower()
    if not last_name:
        errors["last_name"] = "Last name must be provided."

    shipping_address, address_error = validate_shipping_address(
        payload.get("shipping_address")
    )
    if address_error:
        errors["shipping_address"] = address_error

    document = {
        "username": username,
        "email": email,
        "password": password,
        "first_name": first_name,
        "last_name": last_name,
        "shipping_address": shipping_address,
    }
    return document, errors


def validate_review_payload(payload: Optional[Dict]) -> Tuple[Dict, Dict[str, str]]:
    payload = payload or {}
    errors: Dict[str, str] = {}

    rating = strict_int(payload.get("rating"))
    if rating not in ALLOWED_RATINGS:
        errors["rating"] = "Rating must be an integer between 1 and 5."
    title = clean_text(payload.get("review_title"))
    if not title:
        errors["review_title"] = "Provide a review title."
    description = clean_text(payload.get("review_description"))
    if not description:
        errors["review_description"] = "Provide a review description."
    product_id = normalize_object_id_value(payload.get("product_id"))
    if product_id is None:
        errors["product_id"] = "Provide a valid product id."
    reviewer = normalize_object_id_value(payload.get("reviewer"))
    if reviewer is None:
        errors["reviewer"] = "Provide a valid reviewer id."

    document = {
        "rating": rating,
        "review_title": title,
        "review_description": description,
        "product_id": product_id,
        "reviewer": reviewer,
    }
    return document, errors


def validate_cart(cart) -> Tuple[List[Dict], Optional[str]]:
    if not isinstance(cart, list) or not cart:
        return [], "Invalid cart field in payload."
    normalized: List[Dict] = []
    for item in cart:
        if not isinstance(item, dict):
            return [], "Cart items must be objects."
        product_id = normalize_object_id_value(item.get("_id"))
        if product_id is None:
            return [], "Cart items must reference valid product ids."
        cart_quantity = safe_positive_int(item.get("cart_quantity"), 0)
        if cart_quantity < 1:
            return [], "Cart_quantity must be a positive integer value."
        normalized.append({**item, "_id": product_id, "cart_quantity": cart_quantity})
    return normalized, None
