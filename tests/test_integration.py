import stripe

from vtc_api.models import Payment


def test_full_payment_lifecycle_integration(client, mocker, sign, make_event, TestingSessionLocal):
    """
    Test the full lifecycle:
    1. Create payment intent (API -> Stripe mocked -> DB)
    2. Signed webhook success (Stripe -> API -> re-fetch -> DB)
    3. Same webhook delivered again (no change, no error)
    """

    # --- 1. CREATE PAYMENT INTENT ---
    create = mocker.patch(
        "stripe.PaymentIntent.create_async",
        new_callable=mocker.AsyncMock,
        return_value=stripe.PaymentIntent.construct_from(
            {"id": "pi_123", "client_secret": "secret_123", "status": "requires_payment_method"},
            "sk_test_123",
        ),
    )

    response = client.post(
        "/api/payments/create-payment-intent",
        json={"amount": 10000, "currency": "eur", "rideId": "r1", "userId": "u1"},
    )

    assert response.status_code == 200
    assert response.json() == {"clientSecret": "secret_123", "paymentIntentId": "pi_123"}
    assert create.call_args.kwargs["metadata"] == {"rideId": "r1", "userId": "u1"}

    db = TestingSessionLocal()
    payment = db.get(Payment, "pi_123")
    assert payment is not None
    assert payment.amount == 10000
    assert payment.currency == "eur"
    assert payment.status == "requires_payment_method"
    db.close()

    # --- 2. WEBHOOK SUCCESS ---
    retrieve = mocker.patch(
        "stripe.PaymentIntent.retrieve_async",
        new_callable=mocker.AsyncMock,
        return_value=stripe.PaymentIntent.construct_from(
            {
                "id": "pi_123",
                "status": "succeeded",
                "amount": 10000,
                "currency": "eur",
                "payment_method_types": ["card"],
                "latest_charge": {"id": "ch_123", "receipt_url": "https://example/receipt"},
            },
            "sk_test_123",
        ),
    )
    payload = make_event("payment_intent.succeeded", "pi_123", event_id="evt_success")

    webhook_response = client.post(
        "/api/payments/webhook",
        content=payload,
        headers={"stripe-signature": sign(payload)},
    )

    assert webhook_response.status_code == 200
    assert webhook_response.json() == {"received": True}
    assert retrieve.call_args.kwargs["expand"] == ["latest_charge"]

    db = TestingSessionLocal()
    updated_payment = db.get(Payment, "pi_123")
    assert updated_payment.status == "succeeded"
    assert updated_payment.receipt_url == "https://example/receipt"
    assert updated_payment.payment_method == "card"
    db.close()

    # --- 3. REDELIVERY ---
    again = client.post(
        "/api/payments/webhook",
        content=payload,
        headers={"stripe-signature": sign(payload)},
    )

    assert again.status_code == 200
    db = TestingSessionLocal()
    final_payment = db.get(Payment, "pi_123")
    assert (final_payment.status, final_payment.receipt_url, final_payment.payment_method) == (
        "succeeded",
        "https://example/receipt",
        "card",
    )
    db.close()


def test_webhook_before_record_exists(client, mocker, sign, make_event, TestingSessionLocal):
    """A webhook that beats the creation write finds nothing and still returns 200."""
    retrieve = mocker.patch("stripe.PaymentIntent.retrieve_async", new_callable=mocker.AsyncMock)
    payload = make_event("payment_intent.succeeded", "pi_unknown")

    response = client.post("/api/payments/webhook", content=payload, headers={"stripe-signature": sign(payload)})

    assert response.status_code == 200
    retrieve.assert_not_called()
    db = TestingSessionLocal()
    assert db.get(Payment, "pi_unknown") is None
    db.close()


def test_payment_failed_webhook(client, mocker, sign, make_event, TestingSessionLocal):
    mocker.patch(
        "stripe.PaymentIntent.create_async",
        new_callable=mocker.AsyncMock,
        return_value=stripe.PaymentIntent.construct_from(
            {"id": "pi_fail", "client_secret": "secret_fail", "status": "requires_payment_method"},
            "sk_test_123",
        ),
    )
    client.post("/api/payments/create-payment-intent", json={"amount": 2500})
    payload = make_event(
        "payment_intent.payment_failed",
        "pi_fail",
        last_payment_error={"message": "Your card was declined."},
    )

    response = client.post("/api/payments/webhook", content=payload, headers={"stripe-signature": sign(payload)})

    assert response.status_code == 200
    db = TestingSessionLocal()
    payment = db.get(Payment, "pi_fail")
    assert payment.status == "failed"
    assert payment.receipt_url is None
    db.close()


def test_create_payment_provider_error_leaves_no_record(client, mocker, TestingSessionLocal):
    """If Stripe fails, the API returns an error and nothing is stored."""
    mocker.patch(
        "stripe.PaymentIntent.create_async",
        new_callable=mocker.AsyncMock,
        side_effect=stripe.APIConnectionError("Stripe Service Unavailable"),
    )

    response = client.post("/api/payments/create-payment-intent", json={"amount": 2500, "currency": "eur"})

    assert response.status_code == 500
    db = TestingSessionLocal()
    assert db.query(Payment).count() == 0
    db.close()
