from unittest import mock

import pytest
import stripe
from bson import ObjectId

from backend.payments import (
    SHIPPING_COSTS_IN_CENTS,
    calculate_item_amount,
    get_shipping_from_code,
    to_cents,
    to_dollars,
)


def stripe_intent(**values):
    return stripe.PaymentIntent.construct_from(values, "sk_test_dummy")


def cart_for(catalogue, *names):
    return [{"_id": str(catalogue["products"][name]), "cart_quantity": 2} for name in names]


def test_shipping_codes():
    assert get_shipping_from_code("2") == SHIPPING_COSTS_IN_CENTS[2] == 599
    assert get_shipping_from_code(3) == 1599
    with pytest.raises(ValueError):
        get_shipping_from_code(7)


def test_cent_conversions():
    assert to_cents(199.99) == 19999
    assert to_dollars(19999) == 199.99


def test_calculate_item_amount_uses_live_prices(app_ctx, db, catalogue):
    cart = [
        {"_id": catalogue["products"]["Xbox 360"], "cart_quantity": 2, "price": 0.01},
        {"_id": catalogue["products"]["Stapler"], "cart_quantity": 1},
    ]
    assert calculate_item_amount(db, cart) == 412.48
    assert calculate_item_amount(db, []) == 0.0


class TestCreateIntent:
    def test_creates_intent_for_cart(self, client, catalogue):
        created = mock.Mock(id="pi_123", client_secret="pi_123_secret", amount=39998)
        with mock.patch("stripe.PaymentIntent.create", return_value=created) as create:
            response = client.post(
                "/api/payment/create-intent", json={"cart": cart_for(catalogue, "Xbox 360")}
            )
        assert response.status_code == 200
        body = response.get_json()
        assert body["paymentIntentId"] == "pi_123"
        assert body["clientSecret"] == "pi_123_secret"
        assert body["payAmount"] == 399.98
        assert body["customer"] is None

        options = create.call_args.kwargs
        assert options["amount"] == 39998
        assert options["metadata"]["cart_product_ids"] == str(catalogue["products"]["Xbox 360"])
        assert options["metadata"]["shipping_code"] == "1"

    def test_rejects_zero_total(self, client):
        cart = [{"_id": str(ObjectId()), "cart_quantity": 1}]
        with mock.patch("stripe.PaymentIntent.create") as create:
            response = client.post("/api/payment/create-intent", json={"cart": cart})
        assert response.status_code == 400
        create.assert_not_called()

    def test_rejects_bad_cart(self, client):
        response = client.post("/api/payment/create-intent", json={"cart": []})
        assert response.status_code == 400

    def test_stripe_failure(self, client, catalogue):
        error = stripe.error.APIConnectionError("stripe is down")
        with mock.patch("stripe.PaymentIntent.create", side_effect=error):
            response = client.post(
                "/api/payment/create-intent", json={"cart": cart_for(catalogue, "Xbox 360")}
            )
        assert response.status_code == 502


class TestUpdateIntent:
    def test_reprices_with_shipping(self, client, catalogue):
        modified = mock.Mock(amount=39998 + 1599)
        with mock.patch("stripe.PaymentIntent.modify", return_value=modified) as modify:
            response = client.put(
                "/api/payment/intent/pi_123",
                json={"cart": cart_for(catalogue, "Xbox 360"), "shippingCode": 3},
            )
        assert response.status_code == 200
        assert response.get_json() == {
            "amount": {"total": 415.97, "shipping": 15.99, "cartTotal": 399.98}
        }
        assert modify.call_args.args == ("pi_123",)
        assert modify.call_args.kwargs["amount"] == 41597

    def test_unknown_shipping_code(self, client, catalogue):
        with mock.patch("stripe.PaymentIntent.modify") as modify:
            response = client.put(
                "/api/payment/intent/pi_123",
                json={"cart": cart_for(catalogue, "Xbox 360"), "shippingCode": 9},
            )
        assert response.status_code == 400
        modify.assert_not_called()

    def test_missing_shipping_code(self, client, catalogue):
        response = client.put(
            "/api/payment/intent/pi_123", json={"cart": cart_for(catalogue, "Xbox 360")}
        )
        assert response.status_code == 400


class TestRecordOrder:
    def order_payload(self, customer, catalogue, intent_id="pi_123"):
        return {
            "customerId": str(customer["_id"]),
            "paymentIntentId": intent_id,
            "cart": cart_for(catalogue, "Xbox 360"),
        }

    def paid_intent(self, catalogue, status="succeeded", product_ids=None):
        product_ids = product_ids or [str(catalogue["products"]["Xbox 360"])]
        return stripe_intent(
            id="pi_123",
            status=status,
            metadata={
                "cart_product_ids": ",".join(product_ids),
                "cart_total": "399.98",
                "shipping_code": "2",
                "shipping": "5.99",
            },
        )

    def test_records_verified_order(self, client, db, customer, auth_headers, catalogue):
        with mock.patch("stripe.PaymentIntent.retrieve", return_value=self.paid_intent(catalogue)):
            response = client.post(
                "/api/orderhistory",
                json=self.order_payload(customer, catalogue),
                headers=auth_headers(customer),
            )
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["cart_total"] == 399.98
        assert order["shipping"] == {"code": 2, "cost": 5.99}
        assert order["payment_intent_id"] == "pi_123"
        product = db.products.find_one({"_id": catalogue["products"]["Xbox 360"]})
        assert product["total_bought"] == 2

    def test_one_order_per_payment(self, client, customer, auth_headers, catalogue):
        payload = self.order_payload(customer, catalogue)
        with mock.patch("stripe.PaymentIntent.retrieve", return_value=self.paid_intent(catalogue)):
            first = client.post("/api/orderhistory", json=payload, headers=auth_headers(customer))
            second = client.post("/api/orderhistory", json=payload, headers=auth_headers(customer))
        assert first.status_code == 201
        assert second.status_code == 409

    def test_unpaid_intent(self, client, customer, auth_headers, catalogue):
        intent = self.paid_intent(catalogue, status="processing")
        with mock.patch("stripe.PaymentIntent.retrieve", return_value=intent):
            response = client.post(
                "/api/orderhistory",
                json=self.order_payload(customer, catalogue),
                headers=auth_headers(customer),
            )
        assert response.status_code == 402

    def test_cart_mismatch(self, client, customer, auth_headers, catalogue):
        intent = self.paid_intent(catalogue, product_ids=[str(ObjectId())])
        with mock.patch("stripe.PaymentIntent.retrieve", return_value=intent):
            response = client.post(
                "/api/orderhistory",
                json=self.order_payload(customer, catalogue),
                headers=auth_headers(customer),
            )
        assert response.status_code == 400

    def test_unknown_intent(self, client, customer, auth_headers, catalogue):
        error = stripe.error.InvalidRequestError("No such payment_intent", "intent")
        with mock.patch("stripe.PaymentIntent.retrieve", side_effect=error):
            response = client.post(
                "/api/orderhistory",
                json=self.order_payload(customer, catalogue),
                headers=auth_headers(customer),
            )
        assert response.status_code == 400

    def test_cannot_order_for_someone_else(
        self, client, customer, make_customer, auth_headers, catalogue
    ):
        other = make_customer("other")
        response = client.post(
            "/api/orderhistory",
            json=self.order_payload(other, catalogue),
            headers=auth_headers(customer),
        )
        assert response.status_code == 403


def test_stripe_customers_admin_only(client, customer, admin, auth_headers):
    assert client.get("/api/payment/customers", headers=auth_headers(customer)).status_code == 403
    listing = mock.Mock(data=[{"id": "cus_1", "email": "jdoe@example.com"}])
    with mock.patch("stripe.Customer.list", return_value=listing):
        response = client.get("/api/payment/customers", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.get_json() == {"customers": [{"id": "cus_1", "email": "jdoe@example.com"}]}
