import asyncio
import json
import re
from typing import Dict, List, Optional

import httpx
import mysql.connector
import pytest
import pytest_asyncio

import db
from models.app_data import AppData, AppDataCreate
from models.feedback import Feedback, FeedbackCreate, FeedbackStatus
from store.api_client import ApiClient
from store.app_store import AppStore
from store.config import StoreSettings

BASE_URL = "http://testserver/api/v1"


# -------------------------------------------------------------------
# In-memory stand-in for the db module (API tests)
# -------------------------------------------------------------------
class FakeDB:
    def __init__(self):
        self.apps: Dict[str, AppData] = {}
        self.feedback: Dict[str, Feedback] = {}
        self.clock = 1_000

    def _tick(self) -> int:
        self.clock += 1
        return self.clock

    def list_apps(self, search=None, tech_stack=None):
        rows = list(self.apps.values())
        if search:
            s = search.lower()
            rows = [a for a in rows if s in a.name.lower() or s in a.description.lower()]
        if tech_stack:
            wanted = set(tech_stack)
            rows = [a for a in rows if wanted & set(a.tech_stack)]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)

    def fetch_app(self, app_id):
        return self.apps.get(app_id)

    def app_exists(self, app_id):
        return app_id in self.apps

    def insert_app(self, payload: AppDataCreate):
        aid = payload.id or f"app-{self._tick()}"
        if aid in self.apps:
            raise mysql.connector.errors.IntegrityError(msg="Duplicate entry", errno=db.DUPLICATE_KEY)
        data = payload.model_dump(exclude={"id", "created_at"})
        self.apps[aid] = AppData(id=aid, created_at=payload.created_at or self._tick(), **data)
        return self.apps[aid]

    def update_app(self, app_id, data):
        current = self.apps.get(app_id)
        if current is None:
            return None
        changes = {k: v for k, v in data.items() if v is not None}
        if "image_url" in changes or "thumbnail_url" in changes:
            image = changes.get("image_url", changes.get("thumbnail_url"))
            changes["image_url"] = changes["thumbnail_url"] = image
        self.apps[app_id] = current.model_copy(update=changes)
        return self.apps[app_id]

    def delete_app(self, app_id):
        if self.apps.pop(app_id, None) is None:
            return False
        self.feedback = {k: f for k, f in self.feedback.items() if f.app_id != app_id}
        return True

    def list_feedback(self, app_id=None, status=None, type=None):
        rows = [
            f for f in self.feedback.values()
            if (not app_id or f.app_id == app_id)
            and (not status or f.status.value == status)
            and (not type or f.type.value == type)
        ]
        return sorted(rows, key=lambda f: f.created_at, reverse=True)

    def fetch_feedback(self, feedback_id):
        return self.feedback.get(feedback_id)

    def insert_feedback(self, payload: FeedbackCreate):
        fid = payload.id or f"fb-{self._tick()}"
        if fid in self.feedback:
            raise mysql.connector.errors.IntegrityError(msg="Duplicate entry", errno=db.DUPLICATE_KEY)
        self.feedback[fid] = Feedback(
            id=fid,
            app_id=payload.app_id,
            type=payload.type,
            title=payload.title,
            description=payload.description,
            author=payload.author,
            votes=payload.votes or 0,
            status=payload.status or FeedbackStatus.OPEN,
            created_at=payload.created_at or self._tick(),
        )
        return self.feedback[fid]

    def update_feedback(self, feedback_id, data):
        current = self.feedback.get(feedback_id)
        if current is None:
            return None
        changes = {k: v for k, v in data.items() if v is not None}
        self.feedback[feedback_id] = current.model_copy(update=changes)
        return self.feedback[feedback_id]

    def vote_feedback(self, feedback_id, increment=1):
        current = self.feedback.get(feedback_id)
        if current is None:
            return None
        votes = max(current.votes + increment, 0)
        self.feedback[feedback_id] = current.model_copy(update={"votes": votes})
        return self.feedback[feedback_id]

    def delete_feedback(self, feedback_id):
        return self.feedback.pop(feedback_id, None) is not None


DB_FUNCTIONS = [
    "list_apps", "fetch_app", "app_exists", "insert_app", "update_app", "delete_app",
    "list_feedback", "fetch_feedback", "insert_feedback", "update_feedback",
    "vote_feedback", "delete_feedback",
]


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDB()
    for name in DB_FUNCTIONS:
        monkeypatch.setattr(db, name, getattr(fake, name))
    return fake


@pytest.fixture
def api(fake_db):
    from fastapi.testclient import TestClient
    import main

    return TestClient(main.app)


# -------------------------------------------------------------------
# Scriptable HTTP backend for store tests (httpx.MockTransport)
# -------------------------------------------------------------------
def _json(status_code: int, body) -> httpx.Response:
    return httpx.Response(status_code, json=body)


class FakeApi:
    """
    Minimal REST backend speaking the App Hub wire format.

    - `fail(method, path, response_or_exc, times=1)` scripts failures.
    - `hold(method, path, then=None)` returns an asyncio.Event; the next
      matching request waits for it, then answers normally or with `then`.
      With `apply_first=True` the request is applied right away and only the
      response is held back.
    """

    def __init__(self):
        self.apps: List[dict] = []
        self.feedback: List[dict] = []
        self.calls: List[tuple] = []
        self._failures: List[list] = []
        self._holds: List[tuple] = []

    # -- scripting ------------------------------------------------------

    def seed_app(self, **fields) -> dict:
        record = {"techStack": [], "description": "desc", **fields}
        self.apps.insert(0, record)
        return record

    def seed_feedback(self, **fields) -> dict:
        record = {
            "type": "BUG", "title": "t", "description": "d", "author": "Anonymous",
            "votes": 0, "status": "OPEN", "createdAt": 1000, **fields,
        }
        self.feedback.insert(0, record)
        return record

    def fail(self, method: str, path: str, outcome, times: int = 1):
        self._failures.append([method, re.compile(path), outcome, times])

    def hold(self, method: str, path: str, then=None, apply_first: bool = False) -> asyncio.Event:
        gate = asyncio.Event()
        self._holds.append((method, re.compile(path), gate, then, apply_first))
        return gate

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p == path)

    # -- transport ------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path.removeprefix("/api/v1")
        self.calls.append((method, path))

        body = json.loads(request.content) if request.content else None

        for held in list(self._holds):
            m, pattern, gate, then, apply_first = held
            if m == method and pattern.fullmatch(path):
                self._holds.remove(held)
                if apply_first:
                    response = self.route(method, path, request, body)
                    await gate.wait()
                    return response
                await gate.wait()
                if isinstance(then, Exception):
                    raise then
                if then is not None:
                    return then
                break

        for failure in self._failures:
            m, pattern, outcome, times = failure
            if times > 0 and m == method and pattern.fullmatch(path):
                failure[3] -= 1
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome

        return self.route(method, path, request, body)

    def _find(self, rows, rid) -> Optional[dict]:
        return next((r for r in rows if r["id"] == rid), None)

    def route(self, method, path, request, body) -> httpx.Response:
        parts = path.strip("/").split("/")
        if parts[0] == "apps":
            if len(parts) == 1 and method == "GET":
                return _json(200, self.apps)
            if len(parts) == 1 and method == "POST":
                self.apps.insert(0, body)
                return _json(201, body)
            record = self._find(self.apps, parts[1])
            if record is None:
                return _json(404, {"error": "App not found"})
            if method == "PUT":
                record.update({k: v for k, v in body.items() if v is not None})
                return _json(200, record)
            if method == "DELETE":
                self.apps.remove(record)
                return _json(200, {"message": "App deleted successfully", "id": record["id"]})
        if parts[0] == "feedback":
            if len(parts) == 1 and method == "GET":
                app_id = request.url.params.get("appId")
                rows = [f for f in self.feedback if not app_id or f["appId"] == app_id]
                return _json(200, rows)
            if len(parts) == 1 and method == "POST":
                record = {"votes": 0, "status": "OPEN", **body}
                self.feedback.insert(0, record)
                return _json(201, record)
            record = self._find(self.feedback, parts[1])
            if record is None:
                return _json(404, {"error": "Feedback not found"})
            if len(parts) == 3 and parts[2] == "vote":
                record["votes"] = max(record["votes"] + (body or {}).get("increment", 1), 0)
                return _json(200, record)
            if method == "PUT":
                record.update({k: v for k, v in body.items() if v is not None})
                return _json(200, record)
            if method == "DELETE":
                self.feedback.remove(record)
                return _json(200, {"message": "Feedback deleted successfully", "id": record["id"]})
        return _json(404, {"error": "Route not found"})


class RecordingSleep:
    def __init__(self, observe=None):
        self.delays: List[float] = []
        self.observe = observe
        self.observed: List = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        if self.observe:
            self.observed.append(self.observe())


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest_asyncio.fixture
async def store(fake_api, sleeper):
    client = ApiClient(BASE_URL, transport=fake_api.transport())
    settings = StoreSettings(api_url=BASE_URL, timeout=10.0, load_retries=3, retry_base_delay=1.0)
    s = AppStore(settings=settings, client=client, sleep=sleeper)
    yield s
    await s.close()


def network_error(path: str = "/apps") -> httpx.ConnectError:
    return httpx.ConnectError("connection refused", request=httpx.Request("GET", BASE_URL + path))


async def settle(condition, attempts: int = 200):
    """Yield to the event loop until `condition()` holds."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
