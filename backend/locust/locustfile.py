"""
Locust Load Test Suite

Seed first, then pass the printed ids through the environment:

  python -m seatbook.seed --rows A --per-row 10 --users 200
  LOAD_EVENT_ID=1 LOAD_SEAT_IDS=1-10 LOAD_USER_IDS=1-200 locust -f locustfile.py

Run scenarios:
  locust -f locustfile.py --tags contention   # Many users, few seats
  locust -f locustfile.py --tags holds        # Hold/release churn
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random

from locust import HttpUser, task, between, tag, events


def _id_range(value: str) -> list[int]:
    if not value:
        return []
    start, _, end = value.partition("-")
    return list(range(int(start), int(end or start) + 1))


EVENT_ID = int(os.environ.get("LOAD_EVENT_ID", "1"))
SEAT_IDS = _id_range(os.environ.get("LOAD_SEAT_IDS", "1-10"))
USER_IDS = _id_range(os.environ.get("LOAD_USER_IDS", "1-100"))


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Event {EVENT_ID}: {len(SEAT_IDS)} seats, {len(USER_IDS)} users")
    print("=" * 60)


class _SeatUser(HttpUser):
    abstract = True

    def on_start(self):
        self.user_id = random.choice(USER_IDS)
        self.headers = {"X-User-ID": str(self.user_id)}


class ContentionUser(_SeatUser):
    """
    TEST 1: Contention - every user fights for the same few seats

    Run: locust -f locustfile.py --tags contention -u 200 -r 50 --run-time 30s

    After test, verify no seat was sold twice:
      SELECT seat_id, COUNT(*) FROM booking_seats bs
      JOIN bookings b ON b.id = bs.booking_id
      WHERE b.status = 'confirmed' GROUP BY seat_id HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.1)

    @tag("contention")
    @task
    def book_seats(self):
        seats = random.sample(SEAT_IDS, k=min(2, len(SEAT_IDS)))
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": EVENT_ID, "seat_ids": seats, "payment": {"method": "wallet"}},
            headers=self.headers,
            name="/api/v1/bookings/ [contended]",
            catch_response=True,
        ) as resp:
            # 409: lost the seats, 402: wallet empty
            if resp.status_code in (201, 402, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class HoldChurnUser(_SeatUser):
    """
    TEST 2: Holds - take and give back seats as fast as possible

    Run: locust -f locustfile.py --tags holds -u 100 -r 20 --run-time 60s

    Exercises the ledger WATCH/MULTI path and stale hold reconciliation.
    """
    wait_time = between(0.05, 0.3)

    @tag("holds")
    @task(5)
    def hold_and_release(self):
        payload = {"event_id": EVENT_ID, "seat_ids": [random.choice(SEAT_IDS)]}
        with self.client.post(
            "/api/v1/holds/", json=payload, headers=self.headers, catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()
                return
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
                return

        self.client.request("DELETE", "/api/v1/holds/", json=payload, headers=self.headers)

    @tag("holds")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(_SeatUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_seat(self):
        with self.client.post(
            "/api/v1/holds/",
            json={"event_id": EVENT_ID, "seat_ids": [999999]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def empty_selection(self):
        with self.client.post(
            "/api/v1/holds/",
            json={"event_id": EVENT_ID, "seat_ids": []},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def unknown_event(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": 999999, "seat_ids": SEAT_IDS[:1]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_identity(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"event_id": EVENT_ID, "seat_ids": SEAT_IDS[:1]},
            catch_response=True,
        ) as resp:
            self._expect(resp, (401,))
