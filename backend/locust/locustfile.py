"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags venue        # Availability check + double booking race
  locust -f locustfile.py --tags throughput   # Public listing cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

Auth is handled by the gateway, so requests carry X-User-Id / X-User-Roles
directly. Point LOCUST_FACILITY_ID at an operational facility before running.
"""

import os
import random
import uuid
from datetime import date, timedelta

from locust import HttpUser, between, events, tag, task

FACILITY_ID = os.environ.get("LOCUST_FACILITY_ID", "")
RACE_DATE = (date.today() + timedelta(days=60)).isoformat()

# Shared state
EVENT_IDS = []


def admin_headers():
    return {"X-User-Id": str(uuid.uuid4()), "X-User-Roles": "ADMIN"}


def organizer_headers():
    return {"X-User-Id": str(uuid.uuid4()), "X-User-Roles": "TEACHER"}


def session(period="morning", opens="08:00", closes="10:00"):
    return {
        "id": f"{period}-in",
        "name": f"{period.title()} Entry",
        "period": period,
        "direction": "in",
        "opens": opens,
        "closes": closes,
        "late_after": opens,
    }


def event_payload(day, facility_id=FACILITY_ID, period="morning"):
    return {
        "title": f"Load Event {random.randint(1, 100000)}",
        "description": "Load test event",
        "start_date": day,
        "end_date": day,
        "facility_id": facility_id or None,
        "visibility": "public",
        "registration_required": False,
        "audience_config": {"version": 1, "rules": [{"kind": "ALL_STUDENTS", "effect": "include"}]},
        "session_config": {"version": 2, "dates": [{"date": day, "sessions": [session(period)]}]},
        "scanner_config": {"version": 1, "scanner_ids": []},
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Facility under test: {FACILITY_ID or '(none, venue tests skipped)'}")
    print(f"Race date: {RACE_DATE}")
    print("=" * 60)


class VenueRaceUser(HttpUser):
    """
    TEST 1: Availability is advisory - organizers racing for one slot

    Run: locust -f locustfile.py --tags venue -u 50 -r 25 --run-time 30s

    Every user checks the same facility/date/morning and books it if free.
    After the run, count how many events hold that slot:
      SELECT COUNT(*) FROM events
      WHERE facility_id = :id AND start_date = :race_date;
    More than one row shows the check/create window.
    """

    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = organizer_headers()

    @tag("venue")
    @task
    def check_then_book(self):
        if not FACILITY_ID:
            return

        with self.client.get(
            f"/api/v1/facilities/{FACILITY_ID}/availability?date={RACE_DATE}&period=morning",
            headers=admin_headers(),
            name="/api/v1/facilities/{id}/availability",
            catch_response=True,
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Unexpected: {resp.status_code}")
                return
            available = resp.json()["data"]["available"]

        if available:
            resp = self.client.post("/api/v1/events/", json=event_payload(RACE_DATE), headers=self.headers)
            if resp.status_code == 201:
                EVENT_IDS.append(resp.json()["data"]["id"])

    @tag("venue")
    @task(3)
    def bulk_availability(self):
        """Full venue grid for a three-day window."""
        start = date.today() + timedelta(days=random.randint(1, 90))
        days = [(start + timedelta(days=i)).isoformat() for i in range(3)]
        self.client.post(
            "/api/v1/facilities/availability",
            json={
                "start_date": days[0],
                "end_date": days[-1],
                "sessions": [
                    {"date": d, "sessions": [session("morning"), session("afternoon", "13:00", "15:00")]}
                    for d in days
                ],
            },
            headers=admin_headers(),
        )


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false on the API, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """

    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_public_cached(self):
        page = random.randint(1, 5)
        self.client.get(f"/api/v1/events/public?page={page}&page_size=20", name="/api/v1/events/public [cached]")

    @tag("throughput", "read")
    @task(3)
    def list_organizer(self):
        """Uncached, computed per caller."""
        self.client.get("/api/v1/events/organizer?page=1&page_size=20", headers=organizer_headers())

    @tag("throughput")
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

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_event(self):
        with self.client.get(
            f"/api/v1/events/{uuid.uuid4()}", headers=admin_headers(), name="/api/v1/events/{id}", catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def overlapping_sessions(self):
        day = (date.today() + timedelta(days=10)).isoformat()
        payload = event_payload(day)
        payload["session_config"]["dates"][0]["sessions"].append(
            dict(session("morning", "09:00", "11:00"), id="morning-overlap")
        )
        with self.client.post("/api/v1/events/", json=payload, headers=organizer_headers(), catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def end_before_start(self):
        payload = event_payload("2030-01-10")
        payload["end_date"] = "2030-01-01"
        with self.client.post("/api/v1/events/", json=payload, headers=organizer_headers(), catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/events/", data="not json at all", headers=organizer_headers(), catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/events/", json=event_payload("2030-01-01"), catch_response=True) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def parent_creates_event(self):
        headers = {"X-User-Id": str(uuid.uuid4()), "X-User-Roles": "PARENT"}
        with self.client.post(
            "/api/v1/events/", json=event_payload("2030-01-01"), headers=headers, catch_response=True
        ) as resp:
            self._expect(resp, [403])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing the public listing
      - Some organizer listings and availability checks
      - Rare creates
    """

    wait_time = between(1, 3)

    def on_start(self):
        self.headers = organizer_headers()

    @task(50)
    def browse_public(self):
        self.client.get("/api/v1/events/public?page=1&page_size=20")

    @task(15)
    def browse_organizer(self):
        resp = self.client.get("/api/v1/events/organizer?page=1&page_size=20", headers=self.headers)
        if resp.status_code == 200:
            for event in resp.json()["data"]["events"]:
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @task(10)
    def view_event(self):
        if EVENT_IDS:
            self.client.get(
                f"/api/v1/events/{random.choice(EVENT_IDS)}", headers=self.headers, name="/api/v1/events/{id}"
            )

    @task(3)
    def create_event(self):
        day = (date.today() + timedelta(days=random.randint(1, 90))).isoformat()
        period = random.choice(["morning", "afternoon", "evening"])
        resp = self.client.post("/api/v1/events/", json=event_payload(day, period=period), headers=self.headers)
        if resp.status_code == 201:
            EVENT_IDS.append(resp.json()["data"]["id"])
