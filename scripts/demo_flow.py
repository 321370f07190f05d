#!/usr/bin/env python3
"""
Live E2E Demo: one plumbing job from voice note to ratings.

Cast:
  Cora:  customer with a leaking sink
  Walt:  vetted plumber (categorizes, bids, does the work)

Showcases:
  1. Catalogue setup (category, subcategory, pricing floor)
  2. Registration and worker vetting
  3. Service chat: voice note + date, job posted
  4. Categorization consensus (group of one)
  5. Bidding against the pricing floor, bid acceptance
  6. Start code hand-over, job in progress
  7. *1# completion command, completion code, job completed
  8. Mutual ratings

Run:
  1. Start the API:      uvicorn servicehub.main:app --port 8080
  2. Create an admin:    python scripts/create_admin.py +15550000001
  3. Run this demo:      python scripts/demo_flow.py <admin_token> [base_url]
"""

import json
import re
import sys
import time
import uuid

import httpx

if len(sys.argv) < 2:
    print(__doc__)
    sys.exit(2)

ADMIN_TOKEN = sys.argv[1]
BASE_URL = sys.argv[2] if len(sys.argv) > 2 else "http://localhost:8080"

# ─── Colors ───

BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[92m"
BLUE = "\033[94m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
MAGENTA = "\033[95m"
RESET = "\033[0m"


def banner(text: str) -> None:
    print(f"\n{'═' * 64}")
    print(f"  {BOLD}{text}{RESET}")
    print(f"{'═' * 64}")


def step(num: int, text: str) -> None:
    print(f"\n{BOLD}{CYAN}Step {num:2d}{RESET} │ {text}")


def says(name: str, color: str, msg: str) -> None:
    print(f"         {color}{BOLD}{name}{RESET}: {msg}")


def platform_says(msg: str) -> None:
    print(f"         {MAGENTA}⚙ Platform{RESET}: {msg}")


def show_json(data: dict, keys: list[str] | None = None, indent: int = 9) -> None:
    filtered = {k: data[k] for k in keys if k in data} if keys else data
    prefix = " " * indent
    for line in json.dumps(filtered, indent=2, default=str).split("\n"):
        print(f"{prefix}{DIM}{line}{RESET}")


def fail(msg: str) -> None:
    print(f"\n{RED}{BOLD}✖ FAILED: {msg}{RESET}")
    sys.exit(1)


def expect(resp: httpx.Response, status: int, context: str) -> dict:
    if resp.status_code != status:
        fail(f"{context}: expected {status}, got {resp.status_code}: {resp.text}")
    return resp.json()


class Participant:
    """A phone-registered user talking to the API with a bearer token."""

    def __init__(self, name: str, color: str, token: str | None = None) -> None:
        self.name = name
        self.color = color
        self.token = token
        self.user_id: str | None = None
        self.http = httpx.Client(base_url=BASE_URL, timeout=30.0)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def get(self, path: str, **kwargs) -> httpx.Response:  # type: ignore[no-untyped-def]
        return self.http.get(path, headers=self._headers(), **kwargs)

    def post(self, path: str, body: dict | None = None) -> httpx.Response:
        return self.http.post(path, json=body or {}, headers=self._headers())

    def put(self, path: str, body: dict) -> httpx.Response:
        return self.http.put(path, json=body, headers=self._headers())

    def register(self, user_type: str) -> dict:
        phone = f"+1555{uuid.uuid4().int % 10_000_000:07d}"
        data = expect(
            self.post("/users", {"phone": phone, "name": self.name, "user_type": user_type}),
            201, f"register {self.name}",
        )
        self.token = data["access_token"]
        self.user_id = data["user"]["user_id"]
        return data["user"]

    def messages(self, chat_id: str) -> list[dict]:
        return expect(self.get(f"/chats/{chat_id}/messages"), 200, "list messages")


def wait_for(description: str, check, timeout: float = 15.0):  # type: ignore[no-untyped-def]
    """Poll until ``check()`` returns something truthy (the task consumer runs async)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = check()
        if result:
            return result
        time.sleep(0.5)
    fail(f"timed out waiting for {description}")


def code_from(messages: list[dict], message_key: str) -> str | None:
    for message in reversed(messages):
        if message["metadata"].get("messageKey") == message_key:
            match = re.search(r"(\d{4,8})\s*$", message["content"])
            if match:
                return match.group(1)
    return None


def main() -> None:
    banner("ServiceHub live demo")
    admin = Participant("Admin", YELLOW, ADMIN_TOKEN)
    cora = Participant("Cora", BLUE)
    walt = Participant("Walt", GREEN)

    step(1, "Catalogue setup")
    plumbing = expect(admin.post("/admin/categories", {"name": "Plumbing"}), 201, "create category")
    leaks = expect(
        admin.post("/admin/categories", {"name": "Leaks", "parent_id": plumbing["category_id"]}),
        201, "create subcategory",
    )
    expect(
        admin.put(f"/admin/categories/{leaks['category_id']}/pricing",
                  {"baseline_price": "100.00", "min_percentage": 70}),
        200, "set pricing",
    )
    platform_says("Plumbing › Leaks, bids must be at least 70% of 100")

    step(2, "Registration and vetting")
    cora.register("customer")
    walt_user = walt.register("worker")
    says("Walt", GREEN, f"registered, approval {walt_user['approval_status']}")
    expect(admin.put(f"/admin/workers/{walt.user_id}/approval", {"approval_status": "approved"}),
           200, "approve worker")
    expect(admin.post(f"/admin/workers/{walt.user_id}/balance", {"amount": "20.00"}), 200, "credit balance")
    for category in (plumbing, leaks):
        expect(admin.post(f"/admin/workers/{walt.user_id}/skills", {"category_id": category["category_id"]}),
               201, "add skill")
    platform_says("Walt approved, credited and skilled in Plumbing and Leaks")

    step(3, "Cora describes the job")
    chat = expect(cora.post("/chats/service", {"category_id": plumbing["category_id"]}), 200, "open chat")
    for bubble in (
        {"bubble_type": "voice", "content": "https://cdn.example.com/voice/sink.m4a",
         "metadata": {"duration": 14.2}},
        {"bubble_type": "date", "content": "2026-11-04"},
    ):
        expect(cora.post(f"/chats/{chat['chat_id']}/messages", bubble), 201, "send bubble")
    job = expect(
        cora.post("/jobs", {"chat_id": chat["chat_id"], "location_lat": 52.37,
                            "location_lng": 4.89, "price_floor": "60.00"}),
        201, "post job",
    )
    job_id = job["job_id"]
    show_json(job, ["job_id", "status", "broadcasting_phase"])

    step(4, "Categorization")
    queue = wait_for(
        "categorizer assignment",
        lambda: [j for j in expect(walt.get("/workers/me/categorization-jobs"), 200, "queue")
                 if j["job_id"] == job_id],
    )
    platform_says(f"Walt asked to categorize (group of {queue[0]['categorizer_group_size']})")
    vote = expect(
        walt.post(f"/jobs/{job_id}/categorizations", {"subcategory_id": leaks["category_id"]}),
        201, "vote",
    )
    show_json(vote, ["result", "subcategory_id", "bidders_notified"])

    step(5, "Bidding")
    low = walt.post(f"/jobs/{job_id}/bids", {"amount": "50.00"})
    says("Walt", GREEN, f"bids 50.00 → {low.status_code} {low.json()['detail']}")
    bid = expect(walt.post(f"/jobs/{job_id}/bids", {"amount": "85.00", "equipment_cost": "15.00"}),
                 201, "bid")
    show_json(bid, ["amount", "equipment_cost", "service_fee", "total_amount"])
    accepted = expect(cora.post(f"/bids/{bid['bid_id']}/accept"), 200, "accept bid")
    conversation_id = accepted["conversation_chat_id"]
    says("Cora", BLUE, "accepts; a conversation chat with Walt opens")

    step(6, "Start code")
    start_code = wait_for(
        "start code delivery",
        lambda: code_from(cora.messages(chat["chat_id"]), "onboarding_code_delivery"),
    )
    says("Cora", BLUE, f"reads out start code {start_code}")
    expect(walt.post(f"/jobs/{job_id}/onboarding-code/validate", {"code": start_code}), 200, "start code")
    wait_for("job start", lambda: expect(cora.get(f"/jobs/{job_id}"), 200, "job")["status"] == "in_progress")
    platform_says("job in progress")

    step(7, "Completion")
    done = expect(
        walt.post(f"/chats/{conversation_id}/messages", {"bubble_type": "text", "content": "*1#"}),
        201, "completion command",
    )
    if not done["completion_flow_started"]:
        fail("completion flow did not start")
    completion_code = code_from(cora.messages(chat["chat_id"]), "completion_code_delivery")
    if completion_code is None:
        fail("no completion code in the service chat")
    says("Cora", BLUE, f"reads out completion code {completion_code}")
    expect(walt.post(f"/jobs/{job_id}/completion-code/validate", {"code": completion_code}),
           200, "completion code")
    wait_for("job completion", lambda: expect(cora.get(f"/jobs/{job_id}"), 200, "job")["status"] == "completed")
    platform_says("job completed")

    step(8, "Ratings")
    expect(cora.post(f"/jobs/{job_id}/ratings", {"rating": 5, "review_text": "Dry sink, tidy work"}),
           201, "rate worker")
    expect(walt.post(f"/jobs/{job_id}/ratings", {"rating": 4}), 201, "rate customer")
    summary = expect(cora.get(f"/users/{walt.user_id}/ratings"), 200, "rating summary")
    show_json(summary, ["average_rating", "rating_count"])

    banner(f"{GREEN}✔ Demo complete{RESET}")


if __name__ == "__main__":
    main()
