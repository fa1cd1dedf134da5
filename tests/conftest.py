"""
Shared fixtures.

``FakeFirestore`` implements the slice of the google-cloud-firestore client
API the repositories use: collections, documents with generated ids,
``set``/``update``/``get``, ``where(filter=FieldFilter(...))``,
``order_by``, ``limit``, ``stream`` and ``on_snapshot``.
"""

import copy
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from google.api_core.exceptions import NotFound
from google.cloud import firestore

from spendflow.core.subscriptions.models import Plan, PlanLimits, PlanTier
from spendflow.core.subscriptions.plans import PlanRepository, PlanService
from spendflow.core.subscriptions.queue import OperationQueue
from spendflow.core.subscriptions.service import SubscriptionService


# -----------------------------------------------------------------------------
# In-memory Firestore
# -----------------------------------------------------------------------------

def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeSnapshot:
    def __init__(self, doc_id: str, data: Optional[Dict[str, Any]]):
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self, db: "FakeFirestore", query: "FakeQuery", callback: Callable):
        self._db = db
        self.query = query
        self.callback = callback

    def fire(self) -> None:
        self.callback(self.query.get(), [], datetime.now(timezone.utc))

    def unsubscribe(self) -> None:
        self._db.watches.remove(self)


class FakeQuery:
    _OPS = {
        "==": lambda a, b: a == b,
        "!=": lambda a, b: a != b,
        "<": lambda a, b: a is not None and a < b,
        "<=": lambda a, b: a is not None and a <= b,
        ">": lambda a, b: a is not None and a > b,
        ">=": lambda a, b: a is not None and a >= b,
        "in": lambda a, b: a in b,
    }

    def __init__(self, db: "FakeFirestore", collection: str, filters=None, orders=None, limit_to=None):
        self._db = db
        self.collection_name = collection
        self._filters = list(filters or [])
        self._orders = list(orders or [])
        self._limit = limit_to

    def _copy(self, **changes) -> "FakeQuery":
        params = {
            "filters": self._filters,
            "orders": self._orders,
            "limit_to": self._limit,
        }
        params.update(changes)
        return FakeQuery(self._db, self.collection_name, **params)

    def where(self, filter=None):
        return self._copy(filters=self._filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field_path: str, direction: str = firestore.Query.ASCENDING):
        return self._copy(orders=self._orders + [(field_path, direction)])

    def limit(self, count: int):
        return self._copy(limit_to=count)

    def stream(self):
        docs = self._db.store.get(self.collection_name, {})
        matched = [
            (doc_id, data)
            for doc_id, data in docs.items()
            if all(self._OPS[op](data.get(field), value) for field, op, value in self._filters)
        ]
        for field, direction in reversed(self._orders):
            matched.sort(
                key=lambda item: item[1].get(field),
                reverse=direction == firestore.Query.DESCENDING,
            )
        if self._limit is not None:
            matched = matched[: self._limit]
        return iter([FakeSnapshot(doc_id, data) for doc_id, data in matched])

    def get(self) -> List[FakeSnapshot]:
        return list(self.stream())

    def on_snapshot(self, callback: Callable) -> FakeWatch:
        watch = FakeWatch(self._db, self, callback)
        self._db.watches.append(watch)
        watch.fire()
        return watch


class FakeDocumentReference:
    def __init__(self, db: "FakeFirestore", collection: str, doc_id: str):
        self._db = db
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self) -> Dict[str, Dict[str, Any]]:
        return self._db.store.setdefault(self._collection, {})

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self.id, self._docs.get(self.id))

    def set(self, data: Dict[str, Any], merge: bool = False) -> None:
        if merge and self.id in self._docs:
            _deep_merge(self._docs[self.id], data)
        else:
            self._docs[self.id] = copy.deepcopy(data)
        self._db.notify(self._collection)

    def update(self, data: Dict[str, Any]) -> None:
        if self.id not in self._docs:
            raise NotFound(f"No document to update: {self._collection}/{self.id}")
        for key, value in data.items():
            self._docs[self.id][key] = copy.deepcopy(value)
        self._db.notify(self._collection)


class FakeCollectionReference(FakeQuery):
    def document(self, document_id: Optional[str] = None) -> FakeDocumentReference:
        return FakeDocumentReference(self._db, self.collection_name, document_id or secrets.token_hex(10))


class FakeFirestore:
    def __init__(self):
        self.store: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.watches: List[FakeWatch] = []

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def notify(self, collection: str) -> None:
        for watch in list(self.watches):
            if watch.query.collection_name == collection:
                watch.fire()

    def docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Raw stored documents, for assertions."""
        return self.store.get(collection, {})


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

class TickingClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step
        self.calls = 0

    def __call__(self) -> datetime:
        self.current = self.current + self.step
        self.calls += 1
        return self.current


@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def service(db, clock, sleeps) -> SubscriptionService:
    return SubscriptionService.from_firestore(db, queue=OperationQueue(sleep=sleeps.append), clock=clock)


@pytest.fixture
def plan_repo(db) -> PlanRepository:
    return PlanRepository(db)


@pytest.fixture
def plan_service(plan_repo) -> PlanService:
    return PlanService(plan_repo)


@pytest.fixture
def plans(service) -> Dict[str, Plan]:
    """Seed the default catalog and return it keyed by tier value."""
    service.ensure_default_plans_exist()
    return {plan.tier.value: plan for plan in service.get_plans()}


def make_plan(tier: PlanTier, price: int, name: Optional[str] = None, **overrides) -> Plan:
    limits = overrides.pop("limits", None) or PlanLimits.defaults()
    return Plan(
        name=name or f"{tier.value}_{price}",
        display_name=(name or tier.value).title(),
        tier=tier,
        price=price,
        limits=limits,
        **overrides,
    )


def add_owned(db: FakeFirestore, collection: str, user_id: str, count: int) -> None:
    for _ in range(count):
        db.collection(collection).document().set({"userId": user_id})

