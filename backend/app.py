import os
import re
from datetime import datetime, timedelta
from typing import Dict, Optional

import bcrypt
import stripe
from bson import ObjectId
from dotenv import load_dotenv
from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_pymongo import PyMongo
from jwt.exceptions import PyJWTError
from pymongo.errors import ConnectionFailure
from werkzeug.middleware.proxy_fix import ProxyFix

from .list_handlers import (
    REVIEW_GROUP_STAGE,
    list_categories,
    list_customers,
    list_order_history,
    list_products,
    list_reviews,
)
from .payments import (
    PaymentVerificationError,
    create_payment_intent,
    update_payment_intent,
    verify_order_payment,
)
from .query_params import QueryDescriptor
from .seed import initialize_categories, initialize_products
from .serializers import convert_mongo_types
from .validators import (
    normalize_email,
    normalize_object_id_value,
    validate_cart,
    validate_category_payload,
    validate_customer_payload,
    validate_product_payload,
    validate_review_payload,
    validate_shipping_address,
)

load_dotenv()

DEFAULT_MONGO_URI = "mongodb://localhost:27017/e_commerce_app"


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    app_env = (os.getenv("APP_ENV", "development") or "development").strip().lower()
    try:
        jwt_expires_hours = max(1, int(os.getenv("JWT_EXPIRES_HOURS", "6")))
    except (TypeError, ValueError):
        jwt_expires_hours = 6

    app.config["APP_ENV"] = app_env
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", DEFAULT_MONGO_URI)
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=jwt_expires_hours)
    app.config["JWT_TOKEN_LOCATION"] = ["cookies", "headers"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = "token"
    app.config["JWT_COOKIE_SECURE"] = app_env != "development"
    app.config["JWT_COOKIE_SAMESITE"] = "Lax" if app_env == "development" else "None"
    app.config["JWT_COOKIE_CSRF_PROTECT"] = (
        os.getenv("JWT_COOKIE_CSRF_PROTECT", "false").strip().lower() == "true"
    )
    app.config["STRIPE_SECRET"] = os.getenv("STRIPE_SECRET", "")
    app.config["STRIPE_CURRENCY"] = os.getenv("STRIPE_CURRENCY", "usd")
    app.config["STRIPE_DEFAULT_CUSTOMER"] = (
        os.getenv("STRIPE_DEFAULT_CUSTOMER") or ""
    ).strip()
    app.config["LOG_LEVEL"] = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])
    stripe.api_key = app.config["STRIPE_SECRET"]

    # Honor proxy headers so cookies keep the public HTTPS origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    JWTManager(app)
    if database is None:
        database = PyMongo(app).db
    db = database

    # --- Helpers ---

    def parse_object_id_or_404(value) -> ObjectId:
        object_id = normalize_object_id_value(value)
        if object_id is None:
            abort(404)
        return object_id

    def list_response(handler, *args):
        query = QueryDescriptor.from_args(request.args)
        app.logger.debug("%s %s", handler.__name__, query.as_dict())
        envelope = handler(db, query, *args)
        return jsonify(convert_mongo_types(envelope))

    def validation_error(message: str, errors: Dict[str, str]):
        return jsonify({"message": message, "errors": errors}), 400

    def build_user_payload(customer_document) -> Dict:
        return convert_mongo_types(
            {
                "id": str(customer_document["_id"]),
                "username": customer_document.get("username", ""),
                "user_code": customer_document.get("user_code", 1),
                "is_admin": bool(customer_document.get("is_admin", False)),
                "email": customer_document.get("email", ""),
                "created_at": customer_document.get("created_at"),
                "first_name": customer_document.get("first_name", ""),
                "last_name": customer_document.get("last_name", ""),
                "shipping_address": customer_document.get("shipping_address"),
            }
        )

    def issue_session(customer_document):
        user_payload = build_user_payload(customer_document)
        claims = {key: value for key, value in user_payload.items() if key != "id"}
        token = create_access_token(
            identity=user_payload["id"], additional_claims=claims
        )
        response = jsonify({"user": user_payload, "access_token": token})
        set_access_cookies(
            response,
            token,
            max_age=int(app.config["JWT_ACCESS_TOKEN_EXPIRES"].total_seconds()),
        )
        return response

    def is_admin_user() -> bool:
        return bool(get_jwt().get("is_admin"))

    def require_admin_user():
        if is_admin_user():
            return None
        return jsonify({"message": "You are unauthorized."}), 403

    def require_owner_or_admin(owner_id):
        if is_admin_user():
            return None
        if owner_id is not None and str(owner_id) == get_jwt_identity():
            return None
        return (
            jsonify({"message": "You are unauthorized to access this resource."}),
            403,
        )

    def fetch_review_info(product_id: ObjectId):
        stats = list(
            db.reviews.aggregate(
                [{"$match": {"product_id": product_id}}, REVIEW_GROUP_STAGE]
            )
        )
        if not stats:
            return None
        return {
            "avg_rating": round(float(stats[0].get("avg_rating") or 0), 2),
            "review_count": int(stats[0].get("review_count") or 0),
        }

    def reviewer_display_name(customer_document) -> str:
        full_name = " ".join(
            part.capitalize()
            for part in (
                customer_document.get("first_name", ""),
                customer_document.get("last_name", ""),
            )
            if part
        )
        return full_name or customer_document.get("username", "")

    # --- Request logging & errors ---

    @app.after_request
    def log_request(response):
        app.logger.info("%s %s %s", request.method, request.path, response.status_code)
        return response

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"message": "Resource not found."}), 404

    @app.errorhandler(ConnectionFailure)
    def database_unavailable(error):
        app.logger.error("Database unavailable: %s", error)
        return jsonify({"message": "Database unavailable."}), 500

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error("Unhandled error: %s", getattr(error, "original_exception", error))
        return jsonify({"message": "Internal server error."}), 500

    # --- CLI ---

    @app.cli.command("seed-db")
    def seed_db_command():
        """Insert the default categories and products."""
        created_categories = initialize_categories(db)
        created_products = initialize_products(db)
        app.logger.info(
            "Seeded %s categories and %s products", created_categories, created_products
        )

    # --- ROUTES ---

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/api/test", methods=["GET"])
    def test_get():
        return jsonify({"message": "ok"})

    # Auth
    @app.route("/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        customer = db.customers.find_one({"email": email}) if email else None
        if not customer:
            return jsonify({"email": "We didn't find this email. Try again."}), 401

        stored_password = customer.get("password") or b""
        if isinstance(stored_password, str):
            stored_password = stored_password.encode("utf-8")
        try:
            password_matches = bcrypt.checkpw(password.encode("utf-8"), stored_password)
        except ValueError:
            app.logger.warning("Customer %s has an unusable password hash", customer["_id"])
            password_matches = False
        if not password_matches:
            return jsonify({"password": "Password is incorrect."}), 401

        app.logger.info("Customer %s logged in", customer["_id"])
        return issue_session(customer)

    @app.route("/auth/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "successfully logged out."})
        unset_jwt_cookies(response)
        return response

    @app.route("/auth/check-auth", methods=["POST"])
    def check_auth():
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError):
            return jsonify({"message": "You are not authenticated.", "isAuth": False})
        if not get_jwt_identity():
            return jsonify({"message": "You are not authenticated.", "isAuth": False})
        claims = get_jwt()
        user = {
            "id": get_jwt_identity(),
            **{
                key: claims.get(key)
                for key in (
                    "username",
                    "user_code",
                    "is_admin",
                    "email",
                    "created_at",
                    "first_name",
                    "last_name",
                    "shipping_address",
                )
            },
        }
        return jsonify({"message": "You are authenticated!", "isAuth": True, "user": user})

    @app.route("/auth/test", methods=["GET"])
    @jwt_required()
    def auth_route_test():
        return jsonify({"message": "ok"})

    @app.route("/auth/testadmin", methods=["GET"])
    @jwt_required()
    def auth_admin_route_test():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error
        return jsonify({"message": "ok"})

    @app.route("/auth/refresh", methods=["POST"])
    @jwt_required()
    def refresh_session():
        customer_id = normalize_object_id_value(get_jwt_identity())
        customer = db.customers.find_one({"_id": customer_id}) if customer_id else None
        if not customer:
            response = jsonify({"message": "We didn't find this account."})
            unset_jwt_cookies(response)
            return response, 401
        return issue_session(customer)

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products_route():
        return list_response(list_products)

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product_route():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        document, errors = validate_product_payload(db, request.get_json(silent=True))
        if errors:
            return validation_error("Invalid product payload.", errors)

        insert_result = db.products.insert_one(document)
        app.logger.info("Created product %s", insert_result.inserted_id)
        created = db.products.find_one({"_id": insert_result.inserted_id})
        return jsonify({"product": convert_mongo_types(created)}), 201

    @app.route("/api/product/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        object_id = parse_object_id_or_404(product_id)
        product_document = db.products.find_one({"_id": object_id}, {"__v": 0})
        if not product_document:
            abort(404)
        product_document["review_info"] = fetch_review_info(object_id)
        return jsonify({"product": convert_mongo_types(product_document)})

    @app.route("/api/product/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        object_id = parse_object_id_or_404(product_id)
        result = db.products.delete_one({"_id": object_id})
        if not result.deleted_count:
            abort(404)
        removed_reviews = db.reviews.delete_many({"product_id": object_id})
        app.logger.info(
            "Deleted product %s and %s reviews", object_id, removed_reviews.deleted_count
        )
        return jsonify({"message": "Product deleted.", "product": {"id": str(object_id)}})

    # Categories
    @app.route("/api/categories", methods=["GET"])
    def list_categories_route():
        return list_response(list_categories)

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category_route():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error

        document, errors = validate_category_payload(request.get_json(silent=True))
        if errors:
            return validation_error("Invalid category payload.", errors)

        name_pattern = re.compile(f"^{re.escape(document['name'])}$", re.IGNORECASE)
        if db.categories.find_one({"name": name_pattern}):
            return jsonify({"message": "That category already exists."}), 409

        insert_result = db.categories.insert_one(document)
        app.logger.info("Created category %s", insert_result.inserted_id)
        created = db.categories.find_one({"_id": insert_result.inserted_id})
        return jsonify({"category": convert_mongo_types(created)}), 201

    @app.route("/api/category/<category_id>", methods=["GET"])
    def get_category(category_id: str):
        object_id = parse_object_id_or_404(category_id)
        category_document = db.categories.find_one({"_id": object_id}, {"__v": 0})
        if not category_document:
            abort(404)
        return jsonify({"category": convert_mongo_types(category_document)})

    @app.route("/api/category/<category_id>/products", methods=["GET"])
    def list_category_products(category_id: str):
        object_id = parse_object_id_or_404(category_id)
        if not db.categories.find_one({"_id": object_id}):
            abort(404)
        return list_response(list_products, object_id)

    # Reviews
    @app.route("/api/reviews", methods=["GET"])
    def list_reviews_route():
        return list_response(list_reviews)

    @app.route("/api/product/<product_id>/reviews", methods=["GET"])
    def list_product_reviews(product_id: str):
        object_id = parse_object_id_or_404(product_id)
        if not db.products.find_one({"_id": object_id}):
            abort(404)
        return list_response(list_reviews, object_id)

    @app.route("/api/reviews", methods=["POST"])
    @jwt_required()
    def create_review():
        document, errors = validate_review_payload(request.get_json(silent=True))
        if errors:
            return validation_error("Invalid review payload.", errors)

        if str(document["reviewer"]) != get_jwt_identity():
            return (
                jsonify({"message": "You are unauthorized to access this resource."}),
                403,
            )

        reviewer = db.customers.find_one({"_id": document["reviewer"]})
        if not reviewer:
            return jsonify({"message": "Invalid payload data."}), 400
        if not db.products.find_one({"_id": document["product_id"]}):
            return jsonify({"message": "Invalid payload data."}), 400

        purchased = db.order_history.find_one(
            {"customer_id": document["reviewer"], "cart._id": document["product_id"]}
        )
        if not purchased:
            return (
                jsonify(
                    {
                        "message": "Customer cannot write a review because they didn't purchase this product."
                    }
                ),
                400,
            )

        document["reviewer_name"] = reviewer_display_name(reviewer)
        document["review_date"] = datetime.utcnow()
        insert_result = db.reviews.insert_one(document)
        app.logger.info(
            "Customer %s reviewed product %s", document["reviewer"], document["product_id"]
        )
        created = db.reviews.find_one({"_id": insert_result.inserted_id})
        return jsonify({"review": convert_mongo_types(created)}), 201

    @app.route("/api/review/<review_id>", methods=["GET"])
    def get_review(review_id: str):
        object_id = parse_object_id_or_404(review_id)
        review_document = db.reviews.find_one({"_id": object_id}, {"__v": 0})
        if not review_document:
            abort(404)
        review_document["product"] = db.products.find_one(
            {"_id": review_document.get("product_id")}, {"__v": 0}
        )
        return jsonify({"review": convert_mongo_types(review_document)})

    @app.route("/api/review/<review_id>", methods=["PUT"])
    @jwt_required()
    def update_review(review_id: str):
        object_id = parse_object_id_or_404(review_id)
        review_document = db.reviews.find_one({"_id": object_id})
        if not review_document:
            abort(404)
        permission_error = require_owner_or_admin(review_document.get("reviewer"))
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        merged = {
            "rating": payload.get("rating", review_document.get("rating")),
            "review_title": payload.get("review_title", review_document.get("review_title")),
            "review_description": payload.get(
                "review_description", review_document.get("review_description")
            ),
            "product_id": review_document.get("product_id"),
            "reviewer": review_document.get("reviewer"),
        }
        document, errors = validate_review_payload(merged)
        if errors:
            return validation_error("Invalid review payload.", errors)

        db.reviews.update_one(
            {"_id": object_id},
            {
                "$set": {
                    "rating": document["rating"],
                    "review_title": document["review_title"],
                    "review_description": document["review_description"],
                    "review_edit_date": datetime.utcnow(),
                }
            },
        )
        updated = db.reviews.find_one({"_id": object_id})
        return jsonify({"review": convert_mongo_types(updated)})

    @app.route("/api/review/<review_id>", methods=["DELETE"])
    @jwt_required()
    def delete_review(review_id: str):
        object_id = parse_object_id_or_404(review_id)
        review_document = db.reviews.find_one({"_id": object_id})
        if not review_document:
            abort(404)
        permission_error = require_owner_or_admin(review_document.get("reviewer"))
        if permission_error:
            return permission_error

        db.reviews.delete_one({"_id": object_id})
        return jsonify({"message": "Review deleted.", "review": {"id": str(object_id)}})

    # Customers
    @app.route("/api/customers", methods=["GET"])
    @jwt_required()
    def list_customers_route():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error
        return list_response(list_customers)

    @app.route("/api/customers", methods=["POST"])
    def register_customer():
        document, errors = validate_customer_payload(request.get_json(silent=True))
        if errors:
            return validation_error("Invalid customer payload.", errors)

        if db.customers.find_one({"username": document["username"]}):
            return jsonify({"message": "That username is already taken."}), 409
        if db.customers.find_one({"email": document["email"]}):
            return jsonify({"message": "An account with this email already exists."}), 409

        document["password"] = bcrypt.hashpw(
            document["password"].encode("utf-8"), bcrypt.gensalt()
        )
        document["created_at"] = datetime.utcnow()
        document["is_admin"] = False
        document["user_code"] = 1

        insert_result = db.customers.insert_one(document)
        app.logger.info("Registered customer %s", insert_result.inserted_id)
        created = db.customers.find_one({"_id": insert_result.inserted_id}, {"password": 0})
        return jsonify({"customer": convert_mongo_types(created)}), 201

    @app.route("/api/customer/<customer_id>", methods=["GET"])
    @jwt_required()
    def get_customer(customer_id: str):
        object_id = parse_object_id_or_404(customer_id)
        permission_error = require_owner_or_admin(object_id)
        if permission_error:
            return permission_error
        customer_document = db.customers.find_one({"_id": object_id}, {"password": 0})
        if not customer_document:
            abort(404)
        return jsonify({"customer": convert_mongo_types(customer_document)})

    @app.route("/api/customer/<customer_id>", methods=["PUT"])
    @jwt_required()
    def update_customer(customer_id: str):
        object_id = parse_object_id_or_404(customer_id)
        permission_error = require_owner_or_admin(object_id)
        if permission_error:
            return permission_error
        customer_document = db.customers.find_one({"_id": object_id})
        if not customer_document:
            abort(404)

        payload = request.get_json(silent=True) or {}
        updates: Dict[str, object] = {}
        errors: Dict[str, str] = {}
        if "first_name" in payload:
            first_name = str(payload.get("first_name") or "").strip().lower()
            if len(first_name) < 2:
                errors["first_name"] = "First name must be at least 2 characters long."
            updates["first_name"] = first_name
        if "last_name" in payload:
            last_name = str(payload.get("last_name") or "").strip().lower()
            if not last_name:
                errors["last_name"] = "Last name must be provided."
            updates["last_name"] = last_name
        if "shipping_address" in payload:
            shipping_address, address_error = validate_shipping_address(
                payload.get("shipping_address")
            )
            if address_error:
                errors["shipping_address"] = address_error
            updates["shipping_address"] = shipping_address
        if errors:
            return validation_error("Invalid customer payload.", errors)
        if not updates:
            return jsonify({"message": "Nothing to update."}), 400

        db.customers.update_one({"_id": object_id}, {"$set": updates})
        updated = db.customers.find_one({"_id": object_id})

        if str(object_id) == get_jwt_identity():
            # the session carries the profile, re-issue it
            return issue_session(updated)
        updated.pop("password", None)
        return jsonify({"customer": convert_mongo_types(updated)})

    # Order history
    @app.route("/api/orderhistory", methods=["GET"])
    @jwt_required()
    def list_order_history_route():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error
        return list_response(list_order_history)

    @app.route("/api/orderhistory/customer/<customer_id>", methods=["GET"])
    @jwt_required()
    def list_customer_order_history(customer_id: str):
        object_id = parse_object_id_or_404(customer_id)
        permission_error = require_owner_or_admin(object_id)
        if permission_error:
            return permission_error
        return list_response(list_order_history, object_id)

    @app.route("/api/orderhistory/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        object_id = parse_object_id_or_404(order_id)
        order_document = db.order_history.find_one({"_id": object_id})
        if not order_document:
            abort(404)
        permission_error = require_owner_or_admin(order_document.get("customer_id"))
        if permission_error:
            return permission_error
        return jsonify({"order": convert_mongo_types(order_document)})

    @app.route("/api/orderhistory", methods=["POST"])
    @jwt_required()
    def create_order():
        payload = request.get_json(silent=True) or {}
        customer_id = normalize_object_id_value(payload.get("customerId"))
        customer = db.customers.find_one({"_id": customer_id}) if customer_id else None
        if not customer:
            return jsonify({"message": "Invalid customer id field in payload."}), 400
        permission_error = require_owner_or_admin(customer_id)
        if permission_error:
            return permission_error

        cart, cart_error = validate_cart(payload.get("cart"))
        if cart_error:
            return jsonify({"message": cart_error}), 400

        payment_intent_id = str(payload.get("paymentIntentId") or "").strip()
        if payment_intent_id and db.order_history.find_one(
            {"payment_intent_id": payment_intent_id}
        ):
            return jsonify({"message": "This payment was already recorded."}), 409

        try:
            cart_total, shipping = verify_order_payment(
                payment_intent_id, cart, str(customer_id)
            )
        except PaymentVerificationError as exc:
            return jsonify({"message": exc.message}), exc.status_code
        except stripe.error.StripeError as exc:
            app.logger.error("Stripe error while validating order history: %s", exc)
            return (
                jsonify({"message": "An error occured while validating order history."}),
                502,
            )

        order_document = {
            "customer_id": customer_id,
            "order_date": datetime.utcnow(),
            "cart_total": cart_total,
            "shipping": shipping,
            "cart": cart,
            "payment_intent_id": payment_intent_id,
        }
        insert_result = db.order_history.insert_one(order_document)
        for item in cart:
            db.products.update_one(
                {"_id": item["_id"]}, {"$inc": {"total_bought": item["cart_quantity"]}}
            )
        app.logger.info(
            "Recorded order %s for customer %s", insert_result.inserted_id, customer_id
        )
        created = db.order_history.find_one({"_id": insert_result.inserted_id})
        return jsonify({"order": convert_mongo_types(created)}), 201

    @app.route("/api/orderhistory/<order_id>", methods=["DELETE"])
    @jwt_required()
    def delete_order(order_id: str):
        permission_error = require_admin_user()
        if permission_error:
            return permission_error
        object_id = parse_object_id_or_404(order_id)
        result = db.order_history.delete_one({"_id": object_id})
        if not result.deleted_count:
            abort(404)
        return jsonify({"message": "Order deleted.", "order": {"id": str(object_id)}})

    # ---- Stripe Payment Integration ----

    @app.route("/api/payment/create-intent", methods=["POST"])
    @jwt_required(optional=True)
    def stripe_create_intent():
        payload = request.get_json(silent=True) or {}
        cart, cart_error = validate_cart(payload.get("cart"))
        if cart_error:
            return jsonify({"message": cart_error}), 400

        try:
            intent = create_payment_intent(db, cart, get_jwt_identity())
        except PaymentVerificationError as exc:
            return jsonify({"message": exc.message}), exc.status_code
        except stripe.error.StripeError as exc:
            app.logger.error("Create payment intent error: %s", exc)
            return jsonify({"message": "Failed to create payment session."}), 502
        return jsonify(intent)

    @app.route("/api/payment/intent/<intent_id>", methods=["PUT"])
    def stripe_update_intent(intent_id: str):
        payload = request.get_json(silent=True) or {}
        if not intent_id or intent_id == "undefined":
            return jsonify({"message": "Missing payment intent id."}), 400
        if not payload.get("shippingCode"):
            return jsonify({"message": "Missing shipping code."}), 400
        cart, cart_error = validate_cart(payload.get("cart"))
        if cart_error:
            return jsonify({"message": cart_error}), 400

        try:
            amounts = update_payment_intent(db, intent_id, cart, payload.get("shippingCode"))
        except ValueError as exc:
            return jsonify({"message": str(exc)}), 400
        except stripe.error.StripeError as exc:
            app.logger.error("Update payment intent error: %s", exc)
            return jsonify({"message": "Failed to update payment session."}), 502
        return jsonify(amounts)

    @app.route("/api/payment/customers", methods=["GET"])
    @jwt_required()
    def stripe_get_customers():
        permission_error = require_admin_user()
        if permission_error:
            return permission_error
        try:
            customers = stripe.Customer.list(limit=10)
        except stripe.error.StripeError as exc:
            app.logger.error("Stripe customer listing error: %s", exc)
            return jsonify({"message": "Failed to load payment customers."}), 502
        return jsonify({"customers": [dict(customer) for customer in customers.data]})

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
