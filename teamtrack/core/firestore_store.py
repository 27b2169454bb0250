# teamtrack/core/firestore_store.py
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from teamtrack.core.store import SUPPORTED_OPS, Document, Filter
from teamtrack.errors import AlreadyExists, NotFound, StoreTimeout, StoreUnavailable, SubscriptionUnavailable

logger = logging.getLogger(__name__)

_CLOSED = object()


def _to_document(snap) -> Document:
    return Document(id=snap.id, data=snap.to_dict() or {})


class FirestoreBatch:
    def __init__(self, store: "FirestoreStore"):
        self._store = store
        self._batch = store.client.batch()

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False) -> None:
        self._batch.set(self._store.client.collection(collection).document(doc_id), fields, merge=merge)

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._batch.update(self._store.client.collection(collection).document(doc_id), fields)

    def create(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._batch.create(self._store.client.collection(collection).document(doc_id), fields)

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._store.client.collection(collection).document(doc_id))

    async def commit(self, timeout: Optional[float] = None) -> None:
        await self._store._run(self._batch.commit, timeout=timeout)


class FirestoreSubscription:
    """Bridges the Firestore watch thread into the event loop."""

    def __init__(self, query):
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        try:
            self._watch = query.on_snapshot(self._on_snapshot)
        except google_exceptions.GoogleAPICallError as e:
            raise SubscriptionUnavailable() from e

    def _on_snapshot(self, docs, changes, read_time) -> None:
        if self._closed:
            return
        items = [_to_document(d) for d in docs]
        self._loop.call_soon_threadsafe(self._queue.put_nowait, items)

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
        self._watch.unsubscribe()
        self._queue.put_nowait(_CLOSED)


class FirestoreStore:
    """RecordStore over the blocking google-cloud-firestore client.

    Every call runs in the loop's default executor and is bounded by a timeout.
    On timeout the write keeps running in its thread; its outcome is unknown.
    """

    def __init__(self, client: Optional[firestore.Client] = None, default_timeout: float = 10.0):
        self.client = client or firestore.client()
        self._timeout = default_timeout

    async def _run(self, fn: Callable, *args, timeout: Optional[float] = None, **kwargs):
        loop = asyncio.get_running_loop()
        fut = loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        try:
            return await asyncio.wait_for(fut, timeout or self._timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Firestore call %s timed out", getattr(fn, "__name__", fn))
            raise StoreTimeout() from e
        except google_exceptions.NotFound as e:
            raise NotFound("Document not found") from e
        except google_exceptions.Conflict as e:
            raise AlreadyExists() from e
        except google_exceptions.DeadlineExceeded as e:
            logger.warning("Firestore call %s hit its deadline", getattr(fn, "__name__", fn))
            raise StoreTimeout() from e
        except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
            logger.warning("Firestore call failed: %s", e)
            raise StoreUnavailable() from e

    def _ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    def _build_query(self, collection: str, filters: Sequence[Filter]):
        q = self.client.collection(collection)
        for field_path, op, value in filters:
            if op not in SUPPORTED_OPS:
                raise ValueError(f"unsupported query operator: {op}")
            q = q.where(filter=FieldFilter(field_path, op, value))
        return q

    # ===== READ =====
    async def get(self, collection: str, doc_id: str, timeout: Optional[float] = None) -> Optional[Document]:
        snap = await self._run(self._ref(collection, doc_id).get, timeout=timeout)
        if not snap.exists:
            return None
        return _to_document(snap)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[Document]:
        q = self._build_query(collection, filters)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            q = q.order_by(order_by, direction=direction)
        if limit:
            q = q.limit(limit)

        def _stream():
            return [_to_document(d) for d in q.stream()]

        return await self._run(_stream, timeout=timeout)

    # ===== WRITE =====
    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        await self._run(self._ref(collection, doc_id).set, fields, merge=merge, timeout=timeout)

    async def add(self, collection: str, fields: Dict[str, Any], timeout: Optional[float] = None) -> str:
        _, ref = await self._run(self.client.collection(collection).add, fields, timeout=timeout)
        return ref.id

    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any], timeout: Optional[float] = None
    ) -> None:
        await self._run(self._ref(collection, doc_id).update, fields, timeout=timeout)

    def new_id(self, collection: str) -> str:
        # auto-id generated client side, no round trip
        return self.client.collection(collection).document().id

    def batch(self) -> FirestoreBatch:
        return FirestoreBatch(self)

    # ===== SUBSCRIBE =====
    def watch(self, collection: str, filters: Sequence[Filter] = ()) -> FirestoreSubscription:
        return FirestoreSubscription(self._build_query(collection, filters))

    async def close(self) -> None:
        await self._run(self.client.close)
