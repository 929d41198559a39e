from decimal import Decimal

import pytest

from src.api.deps import get_payment_gateway
from src.infrastructure.payments.razorpay_gateway import RazorpayGateway
from src.main import app
from tests.helpers import days_from_today

CUSTOMER = 1
PARTNER = 7
ADMIN = 99


@pytest.fixture
def customer(auth_header):
    return auth_header(CUSTOMER)


@pytest.fixture
def partner(auth_header):
    return auth_header(PARTNER, "partner")


@pytest.fixture
def admin(auth_header):
    return auth_header(ADMIN, "admin")


def _create_game(client, admin, stock=1):
    response = client.post(
        "/admin/games",
        json={
            "partner_id": PARTNER,
            "name": "Elden Ring",
            "platform": "PlayStation 5",
            "stock": stock,
            "rental_price_per_day": "10.00",
            "security_deposit": "5.00",
        },
        headers=admin,
    )
    assert response.status_code == 201
    return response.json()["game_id"]


def _book(client, headers, game_id):
    return client.post(
        "/bookings",
        json={
            "game_id": game_id,
            "start_date": days_from_today(1).isoformat(),
            "end_date": days_from_today(3).isoformat(),
        },
        headers=headers,
    )


def _available(client, game_id):
    return client.get(f"/games/{game_id}/availability").json()["available_stock"]


def _webhook(client, provider_payment_id, status):
    return client.post(
        "/webhooks/payments",
        json={"provider_payment_id": provider_payment_id, "status": status},
    )


def test_booking_flow(client, gateway, customer, partner, admin):
    game_id = _create_game(client, admin, stock=1)

    response = _book(client, customer, game_id)
    assert response.status_code == 201
    booking = response.json()
    booking_id = booking["booking_id"]
    assert booking["status"] == "pending"
    assert booking["rental_days"] == 3
    assert Decimal(booking["total_amount"]) == Decimal("35")
    assert _available(client, game_id) == 0

    pay_response = client.post(f"/bookings/{booking_id}/payments", headers=customer)
    assert pay_response.status_code == 201
    payment = pay_response.json()
    assert payment["provider_payment_id"] == f"order_booking-{booking_id}"
    assert payment["key_id"] == "rzp_test_key"
    assert gateway.orders == [(3500, "INR", f"booking-{booking_id}")]

    webhook_response = _webhook(client, payment["provider_payment_id"], "settlement")
    assert webhook_response.status_code == 200
    assert webhook_response.json()["payment_status"] == "paid"
    assert client.get(f"/bookings/{booking_id}", headers=customer).json()["status"] == "confirmed"

    handover = client.patch(f"/partner/bookings/{booking_id}/handover", headers=partner)
    assert handover.status_code == 200
    assert handover.json()["status"] == "active"

    returned = client.patch(f"/partner/bookings/{booking_id}/return", headers=partner)
    assert returned.status_code == 200
    assert returned.json()["status"] == "completed"
    assert _available(client, game_id) == 0

    review = client.post(
        f"/bookings/{booking_id}/reviews",
        json={"rating": 5, "comment": "Smooth rental"},
        headers=customer,
    )
    assert review.status_code == 201

    second = client.post(f"/bookings/{booking_id}/reviews", json={"rating": 4}, headers=customer)
    assert second.status_code == 400

    reviews = client.get(f"/games/{game_id}/reviews").json()
    assert reviews["review_count"] == 1
    assert reviews["average_rating"] == 5.0


def test_out_of_stock_booking_rejected(client, customer, auth_header, admin):
    game_id = _create_game(client, admin, stock=1)
    assert _book(client, customer, game_id).status_code == 201

    response = _book(client, auth_header(2), game_id)

    assert response.status_code == 400
    assert _available(client, game_id) == 0


def test_failed_payment_releases_stock(client, customer, admin):
    game_id = _create_game(client, admin, stock=1)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()

    response = _webhook(client, payment["provider_payment_id"], "expire")
    assert response.status_code == 200
    assert response.json()["payment_status"] == "failed"
    assert client.get(f"/bookings/{booking_id}", headers=customer).json()["status"] == "cancelled"
    assert _available(client, game_id) == 1

    redelivery = _webhook(client, payment["provider_payment_id"], "expire")
    assert redelivery.status_code == 200
    assert _available(client, game_id) == 1


def test_pending_webhook_changes_nothing(client, customer, admin):
    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()

    response = _webhook(client, payment["provider_payment_id"], "pending")

    assert response.json()["payment_status"] == "pending"
    assert client.get(f"/bookings/{booking_id}", headers=customer).json()["status"] == "pending"


def test_webhook_rejects_bad_payloads(client, customer, admin):
    assert client.post("/webhooks/payments", content="not json").status_code == 400
    assert _webhook(client, "order_missing", "captured").status_code == 404

    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()
    assert _webhook(client, payment["provider_payment_id"], "refund_requested").status_code == 400


def test_cancel_restores_availability(client, customer, admin):
    game_id = _create_game(client, admin, stock=2)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    assert _available(client, game_id) == 1

    response = client.patch(f"/bookings/{booking_id}/cancel", headers=customer)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert _available(client, game_id) == 2
    assert client.patch(f"/bookings/{booking_id}/cancel", headers=customer).status_code == 400


def test_other_customer_cannot_see_booking(client, customer, auth_header, admin):
    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]

    assert client.get(f"/bookings/{booking_id}", headers=auth_header(2)).status_code == 403
    assert client.get("/bookings/404", headers=customer).status_code == 404


def test_dispute_over_http(client, customer, partner, admin):
    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()
    _webhook(client, payment["provider_payment_id"], "captured")

    response = client.post(
        f"/bookings/{booking_id}/disputes",
        json={
            "type": "no_show",
            "title": "Renter never came",
            "description": "Waited an hour at the pickup point.",
        },
        headers=partner,
    )
    assert response.status_code == 201
    dispute_id = response.json()["dispute_id"]

    resolved = client.patch(
        f"/admin/disputes/{dispute_id}",
        json={"status": "resolved", "resolution": "Deposit kept"},
        headers=admin,
    )
    assert resolved.status_code == 200
    assert resolved.json()["resolved_by"] == ADMIN

    booking = client.get("/admin/bookings", params={"status_filter": "disputed"}, headers=admin)
    assert [b["booking_id"] for b in booking.json()] == [booking_id]


def test_admin_override_and_restock(client, customer, admin):
    game_id = _create_game(client, admin, stock=1)
    booking_id = _book(client, customer, game_id).json()["booking_id"]

    response = client.patch(
        f"/admin/bookings/{booking_id}/status",
        json={"status": "completed"},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert _available(client, game_id) == 0

    restocked = client.post(f"/admin/games/{game_id}/restock", json={"quantity": 3}, headers=admin)
    assert restocked.status_code == 200
    assert restocked.json()["available_stock"] == 1


def test_availability_reports_date_conflicts(client, customer, admin):
    game_id = _create_game(client, admin, stock=2)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()
    _webhook(client, payment["provider_payment_id"], "paid")

    overlapping = client.get(
        f"/games/{game_id}/availability",
        params={
            "start_date": days_from_today(2).isoformat(),
            "end_date": days_from_today(5).isoformat(),
        },
    ).json()
    clear = client.get(
        f"/games/{game_id}/availability",
        params={
            "start_date": days_from_today(4).isoformat(),
            "end_date": days_from_today(5).isoformat(),
        },
    ).json()

    assert overlapping["has_date_conflict"] is True
    assert clear["has_date_conflict"] is False
    assert client.get("/games/404/availability").status_code == 404


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/admin/bookings"),
        ("get", "/admin/payments"),
        ("get", "/admin/disputes"),
        ("get", "/outbox/events"),
        ("get", "/partner/bookings"),
    ],
)
def test_customer_blocked_from_privileged_routes(client, customer, method, path):
    response = getattr(client, method)(path, headers=customer)
    assert response.status_code == 403


def test_missing_or_bad_token(client):
    assert client.get("/bookings/my").status_code in (401, 403)
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.get("/bookings/my", headers=bad).status_code == 401


def test_outbox_events(client, customer, admin):
    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    client.patch(f"/bookings/{booking_id}/cancel", headers=customer)

    events = client.get("/outbox/events", headers=admin).json()
    assert [e["event_type"] for e in events] == ["BOOKING_CREATED", "BOOKING_CANCELLED"]

    published = client.post(f"/outbox/events/{events[0]['id']}/mark-published", headers=admin)
    assert published.status_code == 200
    assert published.json()["status"] == "PUBLISHED"

    remaining = client.get("/outbox/events", headers=admin).json()
    assert [e["event_type"] for e in remaining] == ["BOOKING_CANCELLED"]


def test_paid_webhook_after_cancellation_queues_refund(client, customer, admin):
    game_id = _create_game(client, admin, stock=1)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()
    client.patch(f"/bookings/{booking_id}/cancel", headers=customer)

    response = _webhook(client, payment["provider_payment_id"], "captured")

    assert response.status_code == 200
    assert response.json()["payment_status"] == "paid"
    assert client.get(f"/bookings/{booking_id}", headers=customer).json()["status"] == "cancelled"
    assert _available(client, game_id) == 1

    events = client.get("/outbox/events", headers=admin).json()
    assert "PAYMENT_REFUND_REQUIRED" in [e["event_type"] for e in events]

    redelivery = _webhook(client, payment["provider_payment_id"], "captured")
    assert redelivery.status_code == 200


def test_webhook_rejected_without_secret(client, customer, admin, monkeypatch):
    monkeypatch.delenv("RAZORPAY_WEBHOOK_SECRET", raising=False)
    game_id = _create_game(client, admin)
    booking_id = _book(client, customer, game_id).json()["booking_id"]
    payment = client.post(f"/bookings/{booking_id}/payments", headers=customer).json()

    app.dependency_overrides[get_payment_gateway] = lambda: RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="secret",
    )
    response = _webhook(client, payment["provider_payment_id"], "paid")

    assert response.status_code == 401
    assert client.get(f"/bookings/{booking_id}", headers=customer).json()["status"] == "pending"
