"""Stripe payment-intent orchestration for the checkout flow.

Amounts are always recomputed from live product prices; the prices a client
sends in its cart are never trusted. Stripe works in cents, the API answers
in dollars.
"""

from typing import Dict, List, Optional, Tuple

import stripe
from flask import current_app

from .validators import safe_float, safe_positive_int

FREE_SHIPPING = 1
GROUND_SHIPPING = 2
NEXT_DAY_AIR = 3

SHIPPING_COSTS_IN_CENTS = {
    FREE_SHIPPING: 0,
    GROUND_SHIPPING: 599,
    NEXT_DAY_AIR: 1599,
}

SUCCEEDED_STATUS = "succeeded"


class PaymentVerificationError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def get_shipping_from_code(shipping_code) -> int:
    """Return the shipping cost in cents for a shipping code (1, 2 or 3)."""
    code = safe_positive_int(shipping_code, 0)
    if code not in SHIPPING_COSTS_IN_CENTS:
        raise ValueError(f"Unknown shipping code: {shipping_code!r}")
    return SHIPPING_COSTS_IN_CENTS[code]


def to_cents(amount_in_dollars: float) -> int:
    return int(round(100 * amount_in_dollars))


def to_dollars(amount_in_cents: int) -> float:
    return round(amount_in_cents / 100, 2)


def calculate_item_amount(db, cart: List[Dict]) -> float:
    product_ids = [item["_id"] for item in cart if item.get("_id") is not None]
    if not product_ids:
        return 0.0

    quantities = {str(item["_id"]): safe_positive_int(item.get("cart_quantity"), 0) for item in cart}
    products = db.products.aggregate([{"$match": {"_id": {"$in": product_ids}}}])

    total = 0.0
    for product in products:
        quantity = quantities.get(str(product["_id"]), 0)
        total += quantity * safe_float(product.get("price"), 0.0)
    return round(total, 2)


def build_intent_metadata(cart: List[Dict], cart_total: float, shipping_code: int, shipping_cents: int) -> Dict[str, str]:
    return {
        "cart_product_ids": ",".join(str(item["_id"]) for item in cart),
        "cart_total": f"{cart_total:.2f}",
        "shipping_code": str(shipping_code),
        "shipping": f"{to_dollars(shipping_cents):.2f}",
    }


def find_stripe_customer(customer_id: Optional[str]):
    """Look up the Stripe customer tagged with our customer id."""
    if customer_id:
        try:
            matches = stripe.Customer.search(query=f"metadata['userId']:'{customer_id}'")
        except stripe.error.StripeError as exc:
            current_app.logger.warning("Stripe customer search failed: %s", exc)
            matches = None
        if matches and matches.data:
            return matches.data[0]

    default_customer = current_app.config.get("STRIPE_DEFAULT_CUSTOMER")
    if default_customer:
        return stripe.Customer.retrieve(default_customer)
    return None


def create_payment_intent(db, cart: List[Dict], customer_id: Optional[str] = None) -> Dict:
    cart_total = calculate_item_amount(db, cart)
    shipping_cents = get_shipping_from_code(FREE_SHIPPING)
    amount = to_cents(cart_total) + shipping_cents
    if amount <= 0:
        raise PaymentVerificationError("Cart total must be greater than zero.")

    intent_options = {
        "amount": amount,
        "currency": current_app.config["STRIPE_CURRENCY"],
        "automatic_payment_methods": {"enabled": True},
        "metadata": build_intent_metadata(cart, cart_total, FREE_SHIPPING, shipping_cents),
    }

    stripe_customer = find_stripe_customer(customer_id)
    customer_session_secret = None
    if stripe_customer is not None:
        intent_options["customer"] = stripe_customer.id
        intent_options["setup_future_usage"] = "on_session"
        intent_options["payment_method_options"] = {
            "card": {"require_cvc_recollection": True}
        }

    payment_intent = stripe.PaymentIntent.create(**intent_options)
    current_app.logger.info("Created payment intent %s for %s cents", payment_intent.id, amount)

    if stripe_customer is not None:
        customer_session = stripe.CustomerSession.create(
            customer=stripe_customer.id,
            components={
                "payment_element": {
                    "enabled": True,
                    "features": {
                        "payment_method_redisplay": "enabled",
                        "payment_method_save": "enabled",
                        "payment_method_save_usage": "on_session",
                        "payment_method_remove": "enabled",
                    },
                }
            },
        )
        customer_session_secret = customer_session.client_secret

    return {
        "paymentIntentId": payment_intent.id,
        "clientSecret": payment_intent.client_secret,
        "customer_session_client_secret": customer_session_secret,
        "customer": {
            "address": stripe_customer.get("address"),
            "name": stripe_customer.get("name"),
        }
        if stripe_customer is not None
        else None,
        "payAmount": to_dollars(payment_intent.amount),
    }


def update_payment_intent(db, intent_id: str, cart: List[Dict], shipping_code) -> Dict:
    shipping_cents = get_shipping_from_code(shipping_code)
    cart_total = calculate_item_amount(db, cart)
    amount = to_cents(cart_total) + shipping_cents

    payment_intent = stripe.PaymentIntent.modify(
        intent_id,
        amount=amount,
        metadata=build_intent_metadata(
            cart, cart_total, safe_positive_int(shipping_code, 0), shipping_cents
        ),
    )
    return {
        "amount": {
            "total": to_dollars(payment_intent.amount),
            "shipping": to_dollars(shipping_cents),
            "cartTotal": cart_total,
        }
    }


def sync_customer_shipping(payment_intent, customer_id: str) -> None:
    shipping = payment_intent.get("shipping")
    if not shipping or not shipping.get("address"):
        return
    try:
        stripe_customer = find_stripe_customer(customer_id)
        if stripe_customer is None:
            return
        stripe.Customer.modify(
            stripe_customer.id,
            shipping={"address": dict(shipping["address"]), "name": shipping.get("name") or ""},
        )
        current_app.logger.info("Updated shipping info of stripe customer %s", stripe_customer.id)
    except stripe.error.StripeError as exc:
        current_app.logger.warning("Unable to sync stripe customer shipping: %s", exc)


def verify_order_payment(payment_intent_id: str, cart: List[Dict], customer_id: str) -> Tuple[float, Dict]:
    """Check a payment intent against the cart being recorded as an order.

    Returns ``(cart_total, shipping)`` taken from the intent metadata.
    """
    if not payment_intent_id:
        raise PaymentVerificationError("Missing payment id field in payload.")

    try:
        payment_intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.error.InvalidRequestError:
        raise PaymentVerificationError("Payment id doesn't exist.")
    if not payment_intent:
        raise PaymentVerificationError("Payment id doesn't exist.")
    if payment_intent.get("status") != SUCCEEDED_STATUS:
        raise PaymentVerificationError("Payment has not been completed.", 402)

    metadata = payment_intent.get("metadata") or {}
    paid_ids = [value for value in str(metadata.get("cart_product_ids") or "").split(",") if value]
    cart_ids = [str(item["_id"]) for item in cart]
    if len(paid_ids) != len(cart_ids) or set(paid_ids) != set(cart_ids):
        current_app.logger.warning(
            "Cart mismatch for payment intent %s: %s != %s", payment_intent_id, cart_ids, paid_ids
        )
        raise PaymentVerificationError("Invalid. Cart items do not match.")

    sync_customer_shipping(payment_intent, customer_id)

    shipping_code = safe_positive_int(metadata.get("shipping_code"), FREE_SHIPPING) or FREE_SHIPPING
    shipping = {
        "code": shipping_code,
        "cost": safe_float(metadata.get("shipping"), 0.0),
    }
    return safe_float(metadata.get("cart_total"), 0.0), shipping

