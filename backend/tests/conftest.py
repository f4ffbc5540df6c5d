"""
Fixtures partagées: doubles de test pour l'API Baileys, le scheduler,
l'horloge et les collections MongoDB.
"""

import asyncio
import copy
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from apscheduler.jobstores.base import JobLookupError

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from models.pairing import BaileysConnectionResponse


T0 = datetime(2026, 1, 18, 10, 0, 0, tzinfo=timezone.utc)


# ==================== HORLOGE ====================

class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


# ==================== SCHEDULER ====================

class FakeJob:
    def __init__(self, scheduler, job_id, func, trigger, kwargs):
        self.scheduler = scheduler
        self.id = job_id
        self.func = func
        self.trigger = trigger
        self.kwargs = kwargs

    def remove(self):
        if self.scheduler.jobs.get(self.id) is not self:
            raise JobLookupError(self.id)
        del self.scheduler.jobs[self.id]
        self.scheduler.removed.append(self.id)


class FakeScheduler:
    """Enregistre les jobs sans jamais les déclencher seul"""

    def __init__(self):
        self.jobs = {}
        self.added = []
        self.removed = []

    def add_job(self, func, trigger=None, id=None, **kwargs):
        job = FakeJob(self, id, func, trigger, kwargs)
        self.jobs[id] = job
        self.added.append(job)
        return job

    def find(self, prefix: str):
        for job_id, job in self.jobs.items():
            if job_id.startswith(prefix):
                return job
        return None

    async def fire(self, prefix: str):
        job = self.find(prefix)
        assert job is not None, f"no armed job {prefix}"
        if job.trigger == "date":
            # Comme APScheduler: un job "date" quitte le jobstore avant de s'exécuter
            del self.jobs[job.id]
        await job.func()


# ==================== API BAILEYS ====================

def qr_response(clock: FakeClock, seconds: float = 60, qr: str = "data:image/png;base64,QR1") -> BaileysConnectionResponse:
    return BaileysConnectionResponse(
        qr_code=qr,
        expires_at=(clock.now + timedelta(seconds=seconds)).isoformat(),
        status="waiting_scan",
    )


class FakeBaileysApi:
    """
    Réponses servies dans l'ordre. Chaque élément peut être une réponse,
    une exception à lever, ou une Future à attendre (résolution différée).
    """

    def __init__(self):
        self.qr_responses = []
        self.status_responses = []
        self.create_responses = []
        self.disconnect_responses = []
        self.calls = []

    async def _serve(self, queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, asyncio.Future):
            item = await item
        if isinstance(item, Exception):
            raise item
        return item

    async def get_qr_code(self, connection_id):
        self.calls.append(("get_qr", connection_id))
        return await self._serve(self.qr_responses, BaileysConnectionResponse())

    async def get_connection_status(self, connection_id):
        self.calls.append(("status", connection_id))
        return await self._serve(self.status_responses, BaileysConnectionResponse(status="waiting_scan"))

    async def create_connection(self, name, sectors=None):
        self.calls.append(("create", name, list(sectors or [])))
        return await self._serve(self.create_responses, BaileysConnectionResponse())

    async def disconnect_connection(self, connection_id):
        self.calls.append(("disconnect", connection_id))
        return await self._serve(self.disconnect_responses, BaileysConnectionResponse(success=True))

    def count(self, action):
        return len([c for c in self.calls if c[0] == action])


# ==================== MONGODB ====================

def _matches(doc, query):
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


def _project(doc, projection):
    out = copy.deepcopy(doc)
    if projection and projection.get("_id") == 0:
        out.pop("_id", None)
    return out


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs = sorted(self.docs, key=lambda d: d.get(key) or "", reverse=direction < 0)
        return self

    async def to_list(self, length):
        return self.docs[:length]


class FakeCollection:
    def __init__(self):
        self.docs = []
        self._next_id = 1

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query or {})])

    async def find_one(self, query, projection=None):
        for d in self.docs:
            if _matches(d, query):
                return _project(d, projection)
        return None

    async def insert_one(self, doc):
        doc["_id"] = self._next_id
        self._next_id += 1
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update):
        for d in self.docs:
            if _matches(d, query):
                d.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        for i, d in enumerate(self.docs):
            if _matches(d, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDb:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())


# ==================== FIXTURES ====================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def api():
    return FakeBaileysApi()


@pytest.fixture
def fake_db(monkeypatch):
    """Remplace la base Motor dans les services"""
    import services.connections
    import services.event_logger

    database = FakeDb()
    monkeypatch.setattr(services.connections, "db", database)
    monkeypatch.setattr(services.event_logger, "db", database)
    return database


def connection_doc(connection_id="conn-1", status="connecting", **extra):
    doc = {
        "id": connection_id,
        "name": "Atendimento",
        "channel": "whatsapp",
        "sectors": ["Vendas"],
        "status": status,
        "phone_number": None,
        "qr_expires_at": None,
        "last_activity_at": None,
        "created_at": "2026-01-18T09:00:00+00:00",
        "updated_at": "2026-01-18T09:00:00+00:00",
    }
    doc.update(extra)
    return doc
