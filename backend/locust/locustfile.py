"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags storm     # Registration storm on one 10-seat slot
  locust -f locustfile.py --tags scanner   # Several doors scanning the same guests
  locust -f locustfile.py --tags roster    # Guest-list polling (roster cache)
  locust -f locustfile.py --tags edge      # Test bad input
  locust -f locustfile.py                  # All tests
"""

import random
import string
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

# Shared state
STORM = {"event_id": None, "slot_id": None}
SCANNER = {"event_id": None, "slot_id": None, "headers": {}, "tokens": []}

PASSWORD = "loadtest123"


def random_email():
    return f"load_{random.randint(10000, 99999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def random_phone():
    return "05" + "".join(random.choices(string.digits, k=8))


def operator_headers(client):
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD,
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def create_event(client, headers, capacity):
    start = datetime.now(timezone.utc) + timedelta(days=7)
    resp = client.post("/api/v1/events/", json={
        "title": f"Load Test {random.randint(1, 10000)}",
        "slots": [{
            "title": "Main",
            "startsAt": start.isoformat(),
            "endsAt": (start + timedelta(hours=2)).isoformat(),
            "capacity": capacity,
        }],
    }, headers=headers)
    if resp.status_code != 201:
        return None, None
    body = resp.json()
    return body["id"], body["slots"][0]["id"]


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: events are created lazily by the first user of each scenario")
    print("=" * 60)


class RegistrationStormUser(HttpUser):
    """
    TEST 1: Registration storm - many guests, one slot of 10 seats

    Run: locust -f locustfile.py --tags storm -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT registered_count, capacity FROM slots WHERE id = X;
      SELECT SUM(count) FROM registrations WHERE slot_id = X AND status <> 'cancelled';
    Both sums must be equal and <= 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        if STORM["event_id"] is None:
            headers = operator_headers(self.client)
            if headers:
                STORM["event_id"], STORM["slot_id"] = create_event(self.client, headers, capacity=10)
                print(f"\nCreated storm event {STORM['event_id']} (slot {STORM['slot_id']}, 10 seats)\n")

    @tag("storm")
    @task
    def register_into_full_slot(self):
        if STORM["event_id"] is None:
            return

        with self.client.post(
            f"/api/v1/events/{STORM['event_id']}/registrations",
            json={
                "slotId": STORM["slot_id"],
                "name": "Storm Guest",
                "phone": random_phone(),
                "count": random.randint(1, 3),
            },
            name="/api/v1/events/{id}/registrations",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: capacity exceeded / duplicate phone
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ScannerFloodUser(HttpUser):
    """
    TEST 2: Scanner flood - every door scans the same small set of guests

    Run: locust -f locustfile.py --tags scanner -u 30 -r 10 --run-time 60s

    Each guest must end up arrived exactly once: every response after the
    first for a token must say alreadyArrived=true with the same checkedInAt.
    """
    wait_time = between(0.05, 0.3)

    def on_start(self):
        if SCANNER["event_id"] is not None:
            return
        headers = operator_headers(self.client)
        if not headers:
            return
        event_id, slot_id = create_event(self.client, headers, capacity=0)
        if event_id is None:
            return
        SCANNER.update(event_id=event_id, slot_id=slot_id, headers=headers)
        for _ in range(20):
            resp = self.client.post(f"/api/v1/events/{event_id}/registrations", json={
                "slotId": slot_id,
                "name": "Door Guest",
                "phone": random_phone(),
                "count": 1,
            }, name="/api/v1/events/{id}/registrations [seed]")
            if resp.status_code == 201:
                SCANNER["tokens"].append(resp.json()["accessToken"])

    @tag("scanner")
    @task(10)
    def scan_guest(self):
        if not SCANNER["tokens"]:
            return
        token = random.choice(SCANNER["tokens"])
        with self.client.post(
            "/api/v1/checkin",
            json={"token": token, "action": "checkin", "eventId": SCANNER["event_id"]},
            headers=SCANNER["headers"],
            catch_response=True,
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("scanner")
    @task(1)
    def undo_guest(self):
        if not SCANNER["tokens"]:
            return
        self.client.post(
            "/api/v1/checkin/undo",
            json={"token": random.choice(SCANNER["tokens"]), "eventId": SCANNER["event_id"]},
            headers=SCANNER["headers"],
        )


class RosterPollUser(HttpUser):
    """
    TEST 3: Guest-list polling - roster cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags roster -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("roster", "read")
    @task(10)
    def poll_roster(self):
        if SCANNER["event_id"] is None:
            return
        self.client.get(
            f"/api/v1/events/{SCANNER['event_id']}/roster",
            headers=SCANNER["headers"],
            name="/api/v1/events/{id}/roster",
        )

    @tag("roster")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = operator_headers(self.client)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_token(self):
        with self.client.post("/api/v1/checkin",
            json={"token": "0" * 32, "action": "checkin"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def party_too_large(self):
        with self.client.post("/api/v1/events/1/registrations",
            json={"slotId": 1, "name": "Big", "phone": random_phone(), "count": 11},
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def bad_phone(self):
        with self.client.post("/api/v1/events/1/registrations",
            json={"slotId": 1, "name": "Nobody", "phone": "12", "count": 1},
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 404])

    @tag("edge")
    @task
    def verify_without_code(self):
        with self.client.post("/api/v1/otp",
            json={"action": "verify", "registrationId": 1, "phone": random_phone()},
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/checkin",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/checkin",
            json={"token": "ABC", "action": "checkin"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
