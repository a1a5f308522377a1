import json
import time

from app.modules.payments.gateways import sign_payload
from app.modules.time_slots import repository as slots_repo

from tests.helpers import auth_headers, booking_body


def _signed(body: dict) -> tuple[bytes, dict]:
    raw = json.dumps(body).encode()
    ts = str(int(time.time()))
    return raw, {
        "Content-Type": "application/json",
        "X-Webhook-Timestamp": ts,
        "X-Webhook-Signature": sign_payload(raw, ts),
    }


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Process-Time" in response.headers

    async def test_health_db(self, client):
        response = await client.get("/api/health/db")

        assert response.status_code == 200
        assert response.json()["database"] == "sqlite"


class TestAuth:

    async def test_missing_token(self, client, seed):
        response = await client.post("/api/appointments", json=booking_body(seed.slot.id))

        assert response.status_code == 401

    async def test_garbage_token(self, client, seed):
        response = await client.get("/api/users/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    async def test_me(self, client, seed):
        response = await client.get("/api/users/me", headers=auth_headers(seed.agent))

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "agent@example.com"
        assert data["company_name"] == "Acme Corp"

    async def test_agents_cannot_manage_slots(self, client, seed):
        body = {
            "doctor_id": str(seed.doctor.id),
            "date": seed.slot.date.isoformat(),
            "start_time": "06:00",
            "end_time": "07:00",
        }

        denied = await client.post("/api/time-slots", json=body, headers=auth_headers(seed.agent))
        allowed = await client.post("/api/time-slots", json=body, headers=auth_headers(seed.admin))

        assert denied.status_code == 403
        assert allowed.status_code == 201
        assert allowed.json()["availability"] == "AVAILABLE"


class TestAppointmentsApi:

    async def test_book_and_cancel(self, client, seed):
        headers = auth_headers(seed.agent)

        booked = await client.post("/api/appointments", json=booking_body(seed.slot.id), headers=headers)
        assert booked.status_code == 201
        appointment = booked.json()["appointment"]
        assert appointment["status"] == "CONFIRMED"

        slot = await client.get(f"/api/time-slots/{seed.slot.id}", headers=headers)
        assert slot.json()["current_bookings"] == 1

        cancelled = await client.patch(
            f"/api/appointments/{appointment['id']}/cancel",
            json={"reason": "Patient unwell"},
            headers=headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"

        slot = await client.get(f"/api/time-slots/{seed.slot.id}", headers=headers)
        assert slot.json()["current_bookings"] == 0

    async def test_full_slot_error_shape(self, client, seed):
        headers = auth_headers(seed.agent)
        first = await client.post("/api/appointments", json=booking_body(seed.small_slot.id), headers=headers)
        assert first.status_code == 201

        response = await client.post(
            "/api/appointments", json=booking_body(seed.small_slot.id, name="Late"), headers=headers
        )

        assert response.status_code == 409
        assert response.json() == {
            "error": "slot_full",
            "message": "This slot just filled, please choose another.",
            "status": 409,
            "retryable": False,
        }
        assert "Retry-After" not in response.headers

    async def test_contention_is_retryable(self, client, seed, monkeypatch):
        async def always_conflict(db, slot_id, expected_version):
            return False

        monkeypatch.setattr(slots_repo, "increment_booking", always_conflict)

        response = await client.post(
            "/api/appointments", json=booking_body(seed.slot.id), headers=auth_headers(seed.agent)
        )

        assert response.status_code == 503
        assert response.json()["retryable"] is True
        assert response.headers["Retry-After"] == "1"

    async def test_bad_patient_email(self, client, seed):
        body = booking_body(seed.slot.id)
        body["patient"]["email"] = "not-an-email"

        response = await client.post("/api/appointments", json=body, headers=auth_headers(seed.agent))

        assert response.status_code == 422

    async def test_other_agent_gets_403(self, client, seed):
        booked = await client.post(
            "/api/appointments", json=booking_body(seed.slot.id), headers=auth_headers(seed.agent)
        )
        appointment_id = booked.json()["appointment"]["id"]

        response = await client.get(f"/api/appointments/{appointment_id}", headers=auth_headers(seed.other_agent))

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_double_cancel_conflict(self, client, seed):
        headers = auth_headers(seed.agent)
        booked = await client.post("/api/appointments", json=booking_body(seed.slot.id), headers=headers)
        url = f"/api/appointments/{booked.json()['appointment']['id']}/cancel"

        await client.patch(url, json={"reason": "first"}, headers=headers)
        again = await client.patch(url, json={"reason": "second"}, headers=headers)

        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

    async def test_notifications_follow_bookings(self, client, seed):
        headers = auth_headers(seed.agent)
        await client.post("/api/appointments", json=booking_body(seed.slot.id), headers=headers)

        inbox = await client.get("/api/notifications", headers=headers)
        assert inbox.json()["unread_count"] == 1
        assert inbox.json()["items"][0]["type"] == "APPOINTMENT_CONFIRMED"

        marked = await client.patch("/api/notifications/read-all", headers=headers)
        assert marked.json() == {"updated": 1}

        inbox = await client.get("/api/notifications", headers=headers)
        assert inbox.json()["unread_count"] == 0


class TestWebhookApi:

    async def test_signed_success_callback(self, client, seed):
        headers = auth_headers(seed.agent)
        booked = (await client.post("/api/appointments", json=booking_body(seed.slot.id), headers=headers)).json()
        submitted = await client.post(
            f"/api/payments/{booked['payment_id']}/submit",
            json={"transaction_id": "pi_api_1", "gateway": "stripe"},
            headers=headers,
        )
        assert submitted.status_code == 200

        raw, hook_headers = _signed({
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_api_1", "amount": 250000, "currency": "lkr"}},
        })
        response = await client.post("/api/payments/webhooks/stripe", content=raw, headers=hook_headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"

        payment = await client.get(f"/api/payments/{booked['payment_id']}", headers=headers)
        assert payment.json()["status"] == "COMPLETED"

        replay = await client.post("/api/payments/webhooks/stripe", content=raw, headers=hook_headers)
        assert replay.json()["outcome"] == "duplicate"

    async def test_bad_signature(self, client, seed):
        raw, hook_headers = _signed({"type": "payment.succeeded", "transaction_id": "x"})
        hook_headers["X-Webhook-Signature"] = "0" * 64

        response = await client.post("/api/payments/webhooks/custom", content=raw, headers=hook_headers)

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_webhook_signature"

    async def test_unknown_gateway(self, client, seed):
        raw, hook_headers = _signed({"type": "payment.succeeded"})

        response = await client.post("/api/payments/webhooks/bitcoin", content=raw, headers=hook_headers)

        assert response.status_code == 422


class TestBulkBookingApi:

    async def test_bulk_booking(self, client, seed):
        headers = auth_headers(seed.agent)
        body = {
            "appointments": [
                booking_body(seed.slot.id, name="Nimal"),
                booking_body(seed.small_slot.id, name="Kamala"),
            ]
        }

        response = await client.post("/api/appointments/bulk", json=body, headers=headers)

        assert response.status_code == 201
        data = response.json()
        assert len(data["bookings"]) == 2
        listed = await client.get(
            "/api/appointments", params={"bulk_booking_id": data["bulk_booking_id"]}, headers=headers
        )
        assert listed.json()["total"] == 2

    async def test_bulk_booking_with_full_slot_books_nothing(self, client, seed):
        headers = auth_headers(seed.agent)
        await client.post("/api/appointments", json=booking_body(seed.small_slot.id), headers=headers)
        body = {
            "appointments": [
                booking_body(seed.slot.id, name="Nimal"),
                booking_body(seed.small_slot.id, name="Kamala"),
            ]
        }

        response = await client.post("/api/appointments/bulk", json=body, headers=headers)

        assert response.status_code == 409
        assert response.json()["error"] == "slot_full"
        listed = await client.get("/api/appointments", headers=headers)
        assert listed.json()["total"] == 1

    async def test_empty_batch(self, client, seed):
        response = await client.post(
            "/api/appointments/bulk", json={"appointments": []}, headers=auth_headers(seed.agent)
        )

        assert response.status_code == 422


class TestAuditApi:

    async def test_agents_cannot_read_audit(self, client, seed):
        response = await client.get("/api/audit/logs", headers=auth_headers(seed.agent))

        assert response.status_code == 403

    async def test_supervisor_filters_by_user_and_action(self, client, seed):
        await client.post("/api/appointments", json=booking_body(seed.slot.id), headers=auth_headers(seed.agent))
        await client.post(
            "/api/appointments", json=booking_body(seed.small_slot.id), headers=auth_headers(seed.other_agent)
        )

        response = await client.get(
            "/api/audit/logs",
            params={"user_id": str(seed.agent.id), "action": "book"},
            headers=auth_headers(seed.supervisor),
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["action"] == "BOOK_APPOINTMENT COMMIT"

    async def test_inverted_date_range(self, client, seed):
        response = await client.get(
            "/api/audit/logs",
            params={"date_from": "2026-02-02", "date_to": "2026-02-01"},
            headers=auth_headers(seed.admin),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
