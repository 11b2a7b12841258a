import json
from decimal import Decimal
from uuid import uuid4

from services.payment_service.intent_metadata import items_from_metadata, items_metadata
from services.payment_service.repository import PaymentRepository
from services.payment_service.stripe_gateway import PaymentGatewayError
from shared.models import DiscountCode
from tests.conftest import CUSTOMER_ID


def intent_payload(**overrides):
    payload = {"amount": 3348, "items": [{"productId": "p-1", "quantity": 2}]}
    payload.update(overrides)
    return payload


def test_health(payment_client):
    assert payment_client.get("/health").json() == {
        "status": "ok",
        "service": "payment-service",
        "version": "1.0.0",
    }


def test_guest_intent(payment_client, fake_gateway, fake_producer):
    response = payment_client.post("/create-payment-intent", json=intent_payload())

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 3348
    assert body["clientSecret"].startswith(body["paymentIntentId"])
    name, params = fake_gateway.calls[-1]
    assert name == "create_payment_intent"
    assert params["customer_id"] is None
    assert params["metadata"]["user_id"] == "guest"
    assert json.loads(params["metadata"]["items"]) == [{"product_id": "p-1", "quantity": 2}]
    assert fake_producer.topics() == ["payment.intent_created"]


def test_invalid_amount_and_missing_items(payment_client, fake_gateway):
    response = payment_client.post("/create-payment-intent", json=intent_payload(amount=0))
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid amount"}

    response = payment_client.post("/create-payment-intent", json=intent_payload(items=[]))
    assert response.status_code == 400
    assert response.json() == {"error": "No items provided"}

    assert fake_gateway.calls == []


def test_customer_created_once_per_profile(payment_client, fake_gateway, profiles, db):
    payment_client.post("/create-payment-intent", json=intent_payload(userId=CUSTOMER_ID))
    payment_client.post("/create-payment-intent", json=intent_payload(userId=CUSTOMER_ID))

    assert fake_gateway.call_names().count("create_customer") == 1
    db.refresh(profiles["customer"])
    customer_id = profiles["customer"].stripe_customer_id
    assert customer_id
    assert fake_gateway.calls[-1][1]["customer_id"] == customer_id
    assert fake_gateway.calls[-1][1]["metadata"]["user_id"] == CUSTOMER_ID


def test_discount_applied_to_intent_amount(payment_client, fake_gateway, discounts):
    response = payment_client.post("/create-payment-intent", json=intent_payload(discountCode="welcome10"))

    assert response.status_code == 200
    assert response.json()["amount"] == 3013
    params = fake_gateway.calls[-1][1]
    assert params["amount"] == 3013
    assert params["metadata"]["discount_code"] == "WELCOME10"
    assert params["metadata"]["discount_amount"] == "335"
    assert params["metadata"]["original_amount"] == "3348"


def test_invalid_discount_rejects_intent(payment_client, fake_gateway, discounts):
    response = payment_client.post("/create-payment-intent", json=intent_payload(discountCode="NOPE"))

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid discount code"}
    assert fake_gateway.calls == []


def test_gateway_failure_is_500(payment_client, fake_gateway):
    fake_gateway.fail_with = PaymentGatewayError("Stripe is down")

    response = payment_client.post("/create-payment-intent", json=intent_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Stripe is down"}


def test_validate_discount(payment_client, discounts):
    body = payment_client.post("/validate-discount", json={"code": "FIVEOFF", "amount": 3348}).json()
    assert body == {"valid": True, "code": "FIVEOFF", "discountAmount": 500, "amount": 2848}

    body = payment_client.post("/validate-discount", json={"code": "LIMITED", "amount": 3348}).json()
    assert body["valid"] is False
    assert body["error"] == "Discount code has reached its redemption limit"


def test_confirm_payment_succeeds_and_publishes(payment_client, fake_gateway, fake_producer):
    intent = payment_client.post("/create-payment-intent", json=intent_payload(userId="user-9")).json()

    response = payment_client.post(
        "/confirm-payment",
        json={
            "clientSecret": intent["clientSecret"],
            "receiptEmail": "casey@example.com",
            "fullName": "Casey Customer",
            "phone": "555-0100",
            "address": {"line1": "1 Main St", "city": "Austin", "state": "TX", "postalCode": "78701"},
        },
    )

    assert response.status_code == 200
    assert response.json() == {"status": "succeeded", "paymentIntentId": intent["paymentIntentId"]}
    shipping = fake_gateway.calls[-1][1]["shipping"]
    assert shipping["name"] == "Casey Customer"
    assert shipping["phone"] == "555-0100"
    assert shipping["address"]["country"] == "US"

    topic, event = fake_producer.published[-1]
    assert topic == "payment.succeeded"
    assert event.user_id == "user-9"
    assert event.amount == 3348
    assert event.items == [{"product_id": "p-1", "quantity": 2}]


def test_confirm_without_address_sends_no_shipping(payment_client, fake_gateway):
    intent = payment_client.post("/create-payment-intent", json=intent_payload()).json()

    payment_client.post(
        "/confirm-payment",
        json={"clientSecret": intent["clientSecret"], "receiptEmail": "a@b.co", "fullName": "A B"},
    )

    assert fake_gateway.calls[-1][1]["shipping"] is None


def test_confirm_card_error(payment_client, fake_gateway, fake_producer):
    intent = payment_client.post("/create-payment-intent", json=intent_payload()).json()
    fake_gateway.confirm_error = PaymentGatewayError("Your card was declined.", status_code=402)

    response = payment_client.post(
        "/confirm-payment",
        json={"clientSecret": intent["clientSecret"], "receiptEmail": "a@b.co", "fullName": "A B"},
    )

    assert response.status_code == 402
    assert response.json() == {"error": "Your card was declined."}
    assert "payment.succeeded" not in fake_producer.topics()


def test_confirm_pending_status_does_not_publish(payment_client, fake_gateway, fake_producer):
    intent = payment_client.post("/create-payment-intent", json=intent_payload()).json()
    fake_gateway.confirm_status = "requires_action"

    response = payment_client.post(
        "/confirm-payment",
        json={"clientSecret": intent["clientSecret"], "receiptEmail": "a@b.co", "fullName": "A B"},
    )

    assert response.json()["status"] == "requires_action"
    assert "payment.succeeded" not in fake_producer.topics()


def confirm(payment_client, client_secret):
    return payment_client.post(
        "/confirm-payment",
        json={"clientSecret": client_secret, "receiptEmail": "a@b.co", "fullName": "A B"},
    )


def test_single_use_code_is_refused_after_one_payment(payment_client, fake_gateway, db):
    code = DiscountCode(
        code="ONCE", discount_type="fixed_amount", discount_value=Decimal("5.00"), max_redemptions=1
    )
    db.add(code)
    db.commit()

    first = payment_client.post("/create-payment-intent", json=intent_payload(discountCode="ONCE")).json()
    assert confirm(payment_client, first["clientSecret"]).json()["status"] == "succeeded"

    db.refresh(code)
    assert code.redemptions_count == 1

    response = payment_client.post("/create-payment-intent", json=intent_payload(discountCode="ONCE"))
    assert response.status_code == 400
    assert response.json() == {"error": "Discount code has reached its redemption limit"}
    validated = payment_client.post("/validate-discount", json={"code": "once", "amount": 3348}).json()
    assert validated["valid"] is False


def test_unfinished_payment_does_not_count_redemption(payment_client, fake_gateway, discounts, db):
    intent = payment_client.post("/create-payment-intent", json=intent_payload(discountCode="WELCOME10")).json()
    fake_gateway.confirm_status = "requires_action"

    confirm(payment_client, intent["clientSecret"])

    db.refresh(discounts["percent"])
    assert discounts["percent"].redemptions_count == 0


def test_record_redemption_stops_at_limit(db, discounts):
    repo = PaymentRepository(db)

    assert repo.record_redemption(" welcome10 ") is True
    assert repo.record_redemption("LIMITED") is False
    assert repo.record_redemption("NOPE") is False

    db.refresh(discounts["percent"])
    db.refresh(discounts["exhausted"])
    assert discounts["percent"].redemptions_count == 1
    assert discounts["exhausted"].redemptions_count == 5


def test_large_cart_fits_stripe_metadata(payment_client, fake_gateway, fake_producer):
    items = [{"productId": str(uuid4()), "quantity": index + 1} for index in range(30)]

    intent = payment_client.post("/create-payment-intent", json=intent_payload(items=items)).json()

    metadata = fake_gateway.calls[-1][1]["metadata"]
    assert len(metadata) <= 50
    assert all(len(value) <= 500 for value in metadata.values())
    assert len([key for key in metadata if key.startswith("items")]) > 1

    assert confirm(payment_client, intent["clientSecret"]).status_code == 200
    topic, event = fake_producer.published[-1]
    assert topic == "payment.succeeded"
    assert event.items == [{"product_id": item["productId"], "quantity": item["quantity"]} for item in items]


def test_items_metadata_reads_back_in_order():
    items = [{"product_id": f"{index:036d}", "quantity": index} for index in range(1, 25)]

    metadata = items_metadata(items)

    assert list(metadata) == ["items", "items_1", "items_2", "items_3"]
    assert items_from_metadata(metadata) == items
    assert items_from_metadata({}) == []


def test_oversized_cart_is_rejected(payment_client, fake_gateway):
    items = [{"productId": str(uuid4()), "quantity": 1} for _ in range(500)]

    response = payment_client.post("/create-payment-intent", json=intent_payload(items=items))

    assert response.status_code == 400
    assert response.json() == {"error": "Too many items in cart"}
    assert fake_gateway.calls == []
