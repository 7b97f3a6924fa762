"""
Locust Load Test Suite

Seed an offering first and export its id:
  export TICKET_TYPE_ID=$(python -m scripts.seed_offering --capacity 10)

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overselling
  locust -f locustfile.py --tags callback     # Test callback replay / garbage
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Tokens are minted locally, so SECRET_KEY must match the running API.
"""

import os
import random
import uuid

from locust import HttpUser, task, between, tag

from ticketpay.core.security import create_access_token

TICKET_TYPE_ID = int(os.getenv("TICKET_TYPE_ID", "1"))


def auth_headers() -> dict:
    token = create_access_token({"sub": f"load-{uuid.uuid4().hex[:12]}"})
    return {"Authorization": f"Bearer {token}"}


def stk_callback(checkout_request_id: str, result_code: int = 0) -> dict:
    callback = {
        "MerchantRequestID": f"load-{uuid.uuid4().hex[:8]}",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 500},
                {"Name": "MpesaReceiptNumber", "Value": f"LOAD{random.randint(100000, 999999)}"},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users -> 10 tickets

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT available_quantity FROM ticket_types WHERE id = X;   -- >= 0
      SELECT SUM(quantity) FROM bookings WHERE ticket_type_id = X AND status != 'CANCELLED';
    The sum should be <= capacity.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers()

    @tag("concurrency")
    @task
    def book_limited_tickets(self):
        """All users fight for the same tickets."""
        with self.client.post("/api/v1/bookings/",
            json={"ticket_type_id": TICKET_TYPE_ID, "quantity": 1},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: sold out
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class CallbackUser(HttpUser):
    """
    TEST 2: Provider callbacks - unknown references, replays, garbage

    Run: locust -f locustfile.py --tags callback -u 50 -r 10 --run-time 30s

    Every request must be acknowledged with 200 and ResultCode 0; nothing
    in the database may change for references the API never issued.
    """
    wait_time = between(0, 0.2)

    def _expect_ack(self, resp):
        if resp.status_code == 200 and resp.json().get("ResultCode") == 0:
            resp.success()
        else:
            resp.failure(f"Callback not acknowledged: {resp.status_code}")

    @tag("callback")
    @task(5)
    def unknown_reference(self):
        with self.client.post("/api/v1/payments/mpesa-callback",
            json=stk_callback(f"ws_CO_LOAD_{uuid.uuid4().hex[:10]}", random.choice([0, 1, 1032])),
            name="/api/v1/payments/mpesa-callback [unknown]",
            catch_response=True
        ) as resp:
            self._expect_ack(resp)

    @tag("callback")
    @task(1)
    def malformed_body(self):
        with self.client.post("/api/v1/payments/mpesa-callback",
            data="not json at all",
            headers={"Content-Type": "application/json"},
            name="/api/v1/payments/mpesa-callback [malformed]",
            catch_response=True
        ) as resp:
            self._expect_ack(resp)


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers()

    def _post_booking(self, payload, expected, headers=None):
        with self.client.post("/api/v1/bookings/",
            json=payload,
            headers=self.headers if headers is None else headers,
            catch_response=True
        ) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {expected}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_ticket_type(self):
        self._post_booking({"ticket_type_id": 999999, "quantity": 1}, [404])

    @tag("edge")
    @task
    def zero_quantity(self):
        self._post_booking({"ticket_type_id": TICKET_TYPE_ID, "quantity": 0}, [400])

    @tag("edge")
    @task
    def huge_quantity(self):
        self._post_booking({"ticket_type_id": TICKET_TYPE_ID, "quantity": 999999}, [409])

    @tag("edge")
    @task
    def missing_auth(self):
        self._post_booking({"ticket_type_id": TICKET_TYPE_ID, "quantity": 1}, [401], headers={})

    @tag("edge")
    @task
    def pay_unknown_booking(self):
        with self.client.post("/api/v1/payments/initiate",
            json={"booking_id": 999999, "phone_number": "0712345678"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")
