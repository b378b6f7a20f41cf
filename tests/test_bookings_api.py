import re

BOOKING_ID = re.compile(r"^PBS-\d{2}-\d{2}-\d{4}-\d{3}$")


def create_booking(client, headers, body):
    response = client.post("/bookings", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["booking"]


def test_create_cod_booking(client, notifier, user_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)

    assert BOOKING_ID.match(booking["id"])
    assert booking["trackingNumber"] == booking["id"]
    assert booking["userId"] == "user-1"
    assert booking["status"] == "Created"
    assert booking["paymentStatus"] == "pending"
    assert booking["drop"]["phone"] == "+919812345678"
    assert notifier.titles == ["Booking Confirmed"]


def test_online_booking_rejected(client, user_headers, booking_data):
    booking_data["paymentMethod"] = "online"
    response = client.post("/bookings", json=booking_data, headers=user_headers)
    assert response.status_code == 400
    assert "/payments/create" in response.json()["error"]["message"]


def test_validation_errors_use_envelope(client, user_headers, booking_data):
    booking_data["pickup"]["pincode"] = "0123"
    response = client.post("/bookings", json=booking_data, headers=user_headers)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["message"].startswith("pickup.pincode")


def test_invalid_token(client, booking_data):
    response = client.post("/bookings", json=booking_data, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid token"


def test_list_my_bookings(client, user_headers, other_user_headers, booking_data):
    mine = [create_booking(client, user_headers, booking_data)["id"] for _ in range(3)]
    create_booking(client, other_user_headers, booking_data)

    page = client.get("/bookings", params={"limit": 2}, headers=user_headers).json()["data"]
    assert [b["id"] for b in page["bookings"]] == [mine[2], mine[1]]
    assert page["hasMore"] is True

    rest = client.get(
        "/bookings", params={"limit": 2, "lastDocId": page["lastDocId"]}, headers=user_headers
    ).json()["data"]
    assert [b["id"] for b in rest["bookings"]] == [mine[0]]
    assert rest["hasMore"] is False


def test_other_users_booking_is_forbidden(client, user_headers, other_user_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)
    response = client.get(f"/bookings/{booking['id']}", headers=other_user_headers)
    assert response.status_code == 403


def test_public_tracking_hides_contact_details(client, user_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)

    response = client.get(f"/bookings/track/{booking['id'].lower()}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["trackingNumber"] == booking["id"]
    assert data["pickupCity"] == "Bengaluru"
    assert "pickup" not in data


def test_unknown_tracking_number(client):
    response = client.get("/bookings/track/PBS-01-01-2026-999")
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Booking not found"


def test_status_lifecycle_as_admin(client, notifier, user_headers, admin_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)
    url = f"/bookings/{booking['id']}/status"

    for status in ("Picked", "Shipped"):
        response = client.patch(url, json={"status": status}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["booking"]["status"] == status

    response = client.post(
        f"/bookings/{booking['id']}/pod",
        json={"signature": "data:image/png;base64,AAAA", "signedBy": "Vikram"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["booking"]["status"] == "Delivered"
    assert notifier.titles[-1] == "Parcel Delivered"


def test_customer_cannot_advance_status(client, user_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)
    response = client.patch(f"/bookings/{booking['id']}/status", json={"status": "Picked"}, headers=user_headers)
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Unauthorized to update booking status"


def test_invalid_transition_is_bad_request(client, user_headers, admin_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)
    response = client.patch(f"/bookings/{booking['id']}/status", json={"status": "Delivered"}, headers=admin_headers)
    assert response.status_code == 400


def test_return_needs_reason(client, user_headers, admin_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)
    url = f"/bookings/{booking['id']}/status"

    assert client.patch(url, json={"status": "Returned"}, headers=admin_headers).status_code == 400
    response = client.patch(url, json={"status": "Returned", "returnReason": "Refused"}, headers=admin_headers)
    assert response.json()["data"]["booking"]["returnReason"] == "Refused"


def test_admin_payment_status_and_fare(client, user_headers, admin_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)

    response = client.patch(f"/bookings/{booking['id']}/fare", json={"fare": 700}, headers=admin_headers)
    assert response.json()["data"]["booking"]["fare"] == 700

    response = client.patch(
        f"/bookings/{booking['id']}/payment-status", json={"paymentStatus": "paid"}, headers=admin_headers
    )
    assert response.json()["data"]["booking"]["paymentStatus"] == "paid"

    response = client.patch(f"/bookings/{booking['id']}/fare", json={"fare": 10}, headers=admin_headers)
    assert response.status_code == 400


def test_admin_endpoints_require_admin(client, user_headers):
    for path in ("/bookings/admin/all", "/bookings/admin/statistics", "/bookings/admin/search?q=x"):
        response = client.get(path, headers=user_headers)
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Admin access required"


def test_admin_listing_search_and_statistics(client, user_headers, admin_headers, booking_data):
    booking = create_booking(client, user_headers, booking_data)

    listing = client.get("/bookings/admin/all", params={"status": "Created"}, headers=admin_headers).json()
    assert [b["id"] for b in listing["data"]["bookings"]] == [booking["id"]]

    search = client.get("/bookings/admin/search", params={"q": "vikram"}, headers=admin_headers).json()
    assert search["data"]["count"] == 1

    stats = client.get("/bookings/admin/statistics", headers=admin_headers).json()["data"]
    assert stats["total"] == 1
    assert stats["recentBookings"][0]["id"] == booking["id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
