"""
Shared fixtures - in-memory stand-in for the motor database

Supports what the services use: find / find_one / insert_one / update_one,
sort + limit cursors, range operators and session transactions. A
transaction holds a lock for its whole body, rolls back on error and
re-runs its body after an injected transient write conflict.
"""
import asyncio
import copy
import itertools
import pytest

import services.sequence_allocator
import services.payroll_service
import routes.settings
import routes.payroll

PATCHED_MODULES = [
    services.sequence_allocator,
    services.payroll_service,
    routes.settings,
    routes.payroll,
]

_ids = itertools.count(1)


def _matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$in":
                    if value not in arg:
                        return False
                elif op == "$ne":
                    if value == arg:
                        return False
                else:
                    if value is None:
                        return False
                    if op == "$gte" and not value >= arg:
                        return False
                    if op == "$lte" and not value <= arg:
                        return False
                    if op == "$gt" and not value > arg:
                        return False
                    if op == "$lt" and not value < arg:
                        return False
        elif value != cond:
            return False
    return True


def _project(doc: dict, projection) -> dict:
    if not projection:
        return copy.deepcopy(doc)
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        return {k: copy.deepcopy(doc[k]) for k in included if k in doc}
    return {k: copy.deepcopy(v) for k, v in doc.items() if k != "_id"}


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self._limit = None

    def sort(self, key, direction=1):
        self.docs.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self.docs
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return docs


class FakeCollection:
    def __init__(self):
        self.docs = []
        self.reads = 0

    async def find_one(self, query=None, projection=None, session=None):
        self.reads += 1
        for doc in self.docs:
            if _matches(doc, query or {}):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None, session=None):
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query or {})])

    async def insert_one(self, doc, session=None):
        doc["_id"] = next(_ids)
        self.docs.append(copy.deepcopy(doc))

    async def update_one(self, query, update, upsert=False, session=None):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                for k, v in update.get("$inc", {}).items():
                    doc[k] = doc.get(k, 0) + v
                return
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            doc.update(copy.deepcopy(update.get("$set", {})))
            for k, v in update.get("$inc", {}).items():
                doc[k] = doc.get(k, 0) + v
            doc["_id"] = next(_ids)
            self.docs.append(doc)

    async def delete_many(self, query):
        self.docs = [d for d in self.docs if not _matches(d, query)]

    async def create_index(self, keys, **kwargs):
        return "_".join(k for k, _ in keys)


class FakeSession:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def with_transaction(self, callback):
        """
        Runs callback like motor does: on a transient write conflict the
        writes are undone and the whole callback runs again.

        client.pending_conflicts holds one entry per commit that must fail;
        an entry may be a coroutine function (db) -> None, the write another
        writer commits before the retry.
        """
        client = self.client
        async with client.lock:
            client.transactions += 1
            while True:
                snapshot = client.db.snapshot()
                client.attempts += 1
                try:
                    result = await callback(self)
                except Exception:
                    client.db.restore(snapshot)
                    raise
                if not client.pending_conflicts:
                    return result

                competing_write = client.pending_conflicts.pop(0)
                client.db.restore(snapshot)
                if competing_write:
                    await competing_write(client.db)


class FakeClient:
    def __init__(self, db):
        self.db = db
        self.lock = asyncio.Lock()
        self.transactions = 0
        self.attempts = 0
        self.pending_conflicts = []

    async def start_session(self):
        return FakeSession(self)

    def close(self):
        pass


class FakeDB:
    def __init__(self):
        self.collections = {}
        self.client = FakeClient(self)

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def snapshot(self) -> dict:
        return {name: copy.deepcopy(c.docs) for name, c in self.collections.items()}

    def restore(self, snapshot: dict):
        for name, collection in list(self.collections.items()):
            if name in snapshot:
                collection.docs = snapshot[name]
            else:
                del self.collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDB()
    for module in PATCHED_MODULES:
        monkeypatch.setattr(module, "db", db)
    return db
