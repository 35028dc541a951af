"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Last-ticket contention
  locust -f locustfile.py --tags lifecycle    # Book, upload receipt, confirm
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

Tokens are minted locally with the API's signing key (SECRET_KEY env var,
defaulting to the development value).
"""

import os
import random
import uuid
from datetime import datetime, timezone, timedelta

import jwt
from locust import HttpUser, task, between, tag, events

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key-change-in-production")
ORGANIZER_ID = "load-organizer"

# Shared state
EVENT_IDS = []
CONCURRENCY_EVENT_ID = None
CONCURRENCY_CAPACITY = 10


def make_token(user_id, role="user"):
    expires = datetime.now(timezone.utc) + timedelta(hours=2)
    return jwt.encode(
        {"sub": user_id, "role": role, "name": f"Load {user_id[:6]}", "exp": expires},
        SECRET_KEY,
        algorithm="HS256",
    )


def auth(user_id, role="user"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def event_payload(title, capacity):
    future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
    return {
        "title": title,
        "date": future,
        "location": "Load Test Hall",
        "categories": [
            {"name": "general", "unit_price": "25.00", "capacity": capacity},
            {"name": "vip", "unit_price": "80.00", "capacity": max(capacity // 10, 1)},
        ],
        "payment_methods": [{"type": "bank_transfer", "details": {"iban": "DE00 0000"}}],
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Load test against {environment.host}")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users -> 10 general tickets

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT reserved_count, capacity FROM ticket_categories WHERE event_id = X;
    reserved_count must never exceed capacity.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth(uuid.uuid4().hex)
        if not CONCURRENCY_EVENT_ID:
            resp = self.client.post(
                "/api/v1/events/",
                json=event_payload("Concurrency Test Event", CONCURRENCY_CAPACITY),
                headers=auth(ORGANIZER_ID),
            )
            if resp.status_code == 201:
                globals()["CONCURRENCY_EVENT_ID"] = resp.json()["id"]
                print(f"\nCreated event {CONCURRENCY_EVENT_ID} with {CONCURRENCY_CAPACITY} tickets\n")

    @tag("concurrency")
    @task
    def book_last_tickets(self):
        """Everyone fights over the same category."""
        if not CONCURRENCY_EVENT_ID:
            return

        with self.client.post(
            "/api/v1/bookings/",
            json={
                "event_id": CONCURRENCY_EVENT_ID,
                "tickets": [{"type": "general", "quantity": 1}],
                "payment_method": "pay_at_event",
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409 and resp.json().get("code") == "capacity_exceeded":
                resp.success()  # Expected: sold out
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class LifecycleUser(HttpUser):
    """
    TEST 2: Booking lifecycle - book, submit a receipt, organizer confirms

    Run: locust -f locustfile.py --tags lifecycle -u 50 -r 10 --run-time 60s
    """
    wait_time = between(0.2, 1)

    def on_start(self):
        self.user_id = uuid.uuid4().hex
        self.headers = auth(self.user_id)
        self.organizer = auth(ORGANIZER_ID)
        resp = self.client.post(
            "/api/v1/events/",
            json=event_payload(f"Lifecycle {self.user_id[:6]}", 1000),
            headers=self.organizer,
        )
        self.event_id = resp.json()["id"] if resp.status_code == 201 else None
        if self.event_id:
            EVENT_IDS.append(self.event_id)

    @tag("lifecycle")
    @task
    def book_and_pay(self):
        if not self.event_id:
            return
        resp = self.client.post(
            "/api/v1/bookings/",
            json={
                "event_id": self.event_id,
                "tickets": [{"type": "general", "quantity": random.randint(1, 3)}],
                "payment_method": "bank_transfer",
            },
            headers=self.headers,
        )
        if resp.status_code != 201:
            return
        booking = resp.json()

        resp = self.client.post(
            "/api/v1/payment-receipts/",
            json={
                "event_id": self.event_id,
                "booking_id": booking["id"],
                "amount": booking["total_amount"],
                "proof_ref": f"s3://receipts/{uuid.uuid4().hex}.jpg",
                "payment_method": "bank_transfer",
            },
            headers=self.headers,
        )
        if resp.status_code != 201:
            return

        self.client.post(
            f"/api/v1/payment-receipts/{resp.json()['id']}/confirm",
            json={"verification_notes": "load test"},
            headers=self.organizer,
            name="/api/v1/payment-receipts/{id}/confirm",
        )

    @tag("lifecycle", "read")
    @task(3)
    def read_notifications(self):
        self.client.get("/api/v1/notifications/", headers=self.headers)

    @tag("lifecycle", "read")
    @task(2)
    def view_event(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}", name="/api/v1/events/{id}")

    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth(uuid.uuid4().hex)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_event_id(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": 999999, "tickets": [{"type": "general", "quantity": 1}], "payment_method": "pay_at_event"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def zero_quantity(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": 1, "tickets": [{"type": "general", "quantity": 0}], "payment_method": "pay_at_event"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def unknown_category(self):
        if not EVENT_IDS:
            return
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "event_id": random.choice(EVENT_IDS),
                "tickets": [{"type": "balcony", "quantity": 1}],
                "payment_method": "pay_at_event",
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": 1, "tickets": [{"type": "general", "quantity": 1}], "payment_method": "pay_at_event"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
