"""In-process RecordStore.

Used for local development (``STORE_BACKEND=memory``) and by the test suite.
It understands the same write sentinels as Firestore so services behave the
same against both backends.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from firebase_admin import firestore

from teamtrack.core.store import SUPPORTED_OPS, Document, Filter
from teamtrack.errors import AlreadyExists, NotFound

logger = logging.getLogger(__name__)

_CLOSED = object()
_MISSING = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _transform(current: Any, value: Any) -> Any:
    if value is firestore.SERVER_TIMESTAMP:
        return _now()
    if isinstance(value, firestore.ArrayUnion):
        out = list(current) if isinstance(current, list) else []
        for v in value.values:
            if v not in out:
                out.append(copy.deepcopy(v))
        return out
    if isinstance(value, firestore.ArrayRemove):
        if not isinstance(current, list):
            return []
        return [v for v in current if v not in value.values]
    if isinstance(value, dict):
        return {k: _transform(_MISSING, v) for k, v in value.items() if v is not firestore.DELETE_FIELD}
    return copy.deepcopy(value)


def _put(doc: Dict[str, Any], path: List[str], value: Any) -> None:
    node = doc
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    leaf = path[-1]
    if value is firestore.DELETE_FIELD:
        node.pop(leaf, None)
        return
    node[leaf] = _transform(node.get(leaf, _MISSING), value)


def _flatten(fields: Dict[str, Any], prefix: Tuple[str, ...] = ()) -> List[Tuple[List[str], Any]]:
    # set(merge=True) merges nested maps key by key
    out: List[Tuple[List[str], Any]] = []
    for key, value in fields.items():
        path = prefix + (key,)
        if isinstance(value, dict) and value:
            out.extend(_flatten(value, path))
        else:
            out.append((list(path), value))
    return out


def _matches(data: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    for field_path, op, value in filters:
        current: Any = data
        for part in field_path.split("."):
            current = current.get(part, _MISSING) if isinstance(current, dict) else _MISSING
        if op == "==":
            if current is _MISSING or current != value:
                return False
        elif op == "array_contains":
            if not isinstance(current, list) or value not in current:
                return False
        else:
            raise ValueError(f"unsupported query operator: {op}")
    return True


class MemoryBatch:
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str, Dict[str, Any], bool]] = []

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False) -> None:
        self._ops.append(("set", collection, doc_id, fields, merge))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._ops.append(("update", collection, doc_id, fields, False))

    def create(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._ops.append(("create", collection, doc_id, fields, False))

    def delete(self, collection: str, doc_id: str) -> None:
        self._ops.append(("delete", collection, doc_id, {}, False))

    async def commit(self, timeout: Optional[float] = None) -> None:
        # all-or-nothing: validate before applying anything
        for kind, collection, doc_id, _, _ in self._ops:
            exists = doc_id in self._store._data.get(collection, {})
            if kind == "update" and not exists:
                raise NotFound(f"Document not found: {collection}/{doc_id}")
            if kind == "create" and exists:
                raise AlreadyExists(f"Document already exists: {collection}/{doc_id}")
        touched = set()
        for kind, collection, doc_id, fields, merge in self._ops:
            if kind in ("set", "create"):
                self._store._apply_set(collection, doc_id, fields, merge)
            elif kind == "delete":
                self._store._collection(collection).pop(doc_id, None)
            else:
                self._store._apply_update(collection, doc_id, fields)
            touched.add(collection)
        for collection in touched:
            self._store._notify(collection)


class MemorySubscription:
    def __init__(self, store: "MemoryStore", collection: str, filters: Sequence[Filter]):
        self._store = store
        self.collection = collection
        self.filters = list(filters)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._last: Optional[List[Document]] = None
        self._closed = False

    def push(self, docs: List[Document]) -> None:
        if self._closed or docs == self._last:
            return
        self._last = docs
        self._queue.put_nowait(docs)

    def __aiter__(self):
        return self

    async def __anext__(self) -> List[Document]:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._subscriptions.discard(self)
        self._queue.put_nowait(_CLOSED)


class MemoryStore:
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscriptions: set = set()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(name, {})

    def _select(self, collection: str, filters: Sequence[Filter]) -> List[Document]:
        for _, op, _ in filters:
            if op not in SUPPORTED_OPS:
                raise ValueError(f"unsupported query operator: {op}")
        return [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collection(collection).items()
            if _matches(data, filters)
        ]

    def _apply_set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool) -> None:
        docs = self._collection(collection)
        if not merge or doc_id not in docs:
            doc: Dict[str, Any] = {}
            docs[doc_id] = doc
        else:
            doc = docs[doc_id]
        for path, value in _flatten(fields):
            _put(doc, path, value)

    def _apply_update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        doc = self._collection(collection)[doc_id]
        for key, value in fields.items():
            _put(doc, key.split("."), value)

    def _notify(self, collection: str) -> None:
        for sub in list(self._subscriptions):
            if sub.collection == collection:
                sub.push(self._select(collection, sub.filters))

    # ===== READ =====
    async def get(self, collection: str, doc_id: str, timeout: Optional[float] = None) -> Optional[Document]:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[Document]:
        docs = self._select(collection, filters)
        if order_by:
            # like Firestore, documents without the field are left out
            docs = [d for d in docs if d.get(order_by) is not None]
            docs.sort(key=lambda d: d.get(order_by), reverse=descending)
        if limit:
            docs = docs[:limit]
        return docs

    # ===== WRITE =====
    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self._apply_set(collection, doc_id, fields, merge)
        self._notify(collection)

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    async def add(self, collection: str, fields: Dict[str, Any], timeout: Optional[float] = None) -> str:
        doc_id = self.new_id(collection)
        self._apply_set(collection, doc_id, fields, merge=False)
        self._notify(collection)
        return doc_id

    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any], timeout: Optional[float] = None
    ) -> None:
        if doc_id not in self._collection(collection):
            raise NotFound(f"Document not found: {collection}/{doc_id}")
        self._apply_update(collection, doc_id, fields)
        self._notify(collection)

    def batch(self) -> MemoryBatch:
        return MemoryBatch(self)

    # ===== SUBSCRIBE =====
    def watch(self, collection: str, filters: Sequence[Filter] = ()) -> MemorySubscription:
        sub = MemorySubscription(self, collection, filters)
        self._subscriptions.add(sub)
        sub.push(self._select(collection, filters))
        return sub

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.close()
        logger.debug("Memory store closed")
