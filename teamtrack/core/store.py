"""Record store port.

Services only talk to this interface. Field values may carry the Firestore
write sentinels (``firestore.SERVER_TIMESTAMP``, ``firestore.ArrayUnion``,
``firestore.ArrayRemove``, ``firestore.DELETE_FIELD``) and dotted keys such as
``memberRoles.<uid>`` address entries of nested maps. Both adapters honour them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Tuple

# (field, op, value) where op is "==" or "array_contains"
Filter = Tuple[str, str, Any]

SUPPORTED_OPS = ("==", "array_contains")


@dataclass
class Document:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class WriteBatch(Protocol):
    """Writes staged here are applied all together on ``commit`` or not at all."""

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None: ...

    def create(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Like ``set``, but the whole commit fails with ``AlreadyExists`` if the document exists."""

    def delete(self, collection: str, doc_id: str) -> None: ...

    async def commit(self, timeout: Optional[float] = None) -> None: ...


class Subscription(Protocol):
    """Async iterator of full result lists; the first item is the current state."""

    def __aiter__(self) -> AsyncIterator[List[Document]]: ...

    async def __anext__(self) -> List[Document]: ...

    def close(self) -> None: ...


class RecordStore(Protocol):
    async def get(self, collection: str, doc_id: str, timeout: Optional[float] = None) -> Optional[Document]: ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = False,
        timeout: Optional[float] = None,
    ) -> None: ...

    async def add(self, collection: str, fields: Dict[str, Any], timeout: Optional[float] = None) -> str: ...

    async def update(
        self, collection: str, doc_id: str, fields: Dict[str, Any], timeout: Optional[float] = None
    ) -> None: ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[Document]: ...

    def new_id(self, collection: str) -> str: ...

    def batch(self) -> WriteBatch: ...

    def watch(self, collection: str, filters: Sequence[Filter] = ()) -> Subscription: ...

    async def close(self) -> None: ...
