# document_store.py — Org-scoped client over the JSON document table
"""
Document store primitives used by every repository in Solis Center.

Documents live in collections addressed by a slash path (``channels``,
``channels/<id>/messages``, ``members``). Each document is a JSON body plus
``id``, ``created_at`` and ``updated_at``. Every read and write is scoped to
one organisation.

Writes commit immediately unless they run inside ``transaction()``, in which
case they commit (or roll back) together when the block exits. Collections
touched by a committed write are published to the snapshot hub so live
subscribers see the change.
"""
import copy
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends
from sqlalchemy import select, delete as sa_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import StoredDocument, new_uuid, utcnow
from realtime import SnapshotHub, snapshot_hub

logger = logging.getLogger("solis-center.store")

ORG_ID = os.getenv("SOLIS_ORG_ID", "solis-center")

# Metadata keys owned by the store, never persisted inside the body
RESERVED_KEYS = frozenset({"id", "created_at", "updated_at"})


# ============================================================
# ERRORS
# ============================================================

class DocumentStoreError(Exception):
    """Base class for document store failures"""


class DocumentNotFound(DocumentStoreError):
    def __init__(self, path: str, doc_id: str):
        super().__init__(f"Document {path}/{doc_id} not found")
        self.path = path
        self.doc_id = doc_id


class DocumentExists(DocumentStoreError):
    def __init__(self, path: str, doc_id: str):
        super().__init__(f"Document {path}/{doc_id} already exists")
        self.path = path
        self.doc_id = doc_id


# ============================================================
# FIELD TRANSFORMS
# ============================================================

class _FieldTransform:
    def apply(self, current: Any) -> Any:
        raise NotImplementedError


class ArrayUnion(_FieldTransform):
    """Append values not already present (set-union, order preserving)"""

    def __init__(self, *values: Any):
        self.values = values

    def apply(self, current: Any) -> List[Any]:
        items = list(current) if isinstance(current, list) else []
        for value in self.values:
            if value not in items:
                items.append(value)
        return items


class ArrayRemove(_FieldTransform):
    """Remove every occurrence of the given values"""

    def __init__(self, *values: Any):
        self.values = values

    def apply(self, current: Any) -> List[Any]:
        items = list(current) if isinstance(current, list) else []
        return [item for item in items if item not in self.values]


class Increment(_FieldTransform):
    def __init__(self, amount: int = 1):
        self.amount = amount

    def apply(self, current: Any) -> Any:
        return (current or 0) + self.amount


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


# ============================================================
# HELPERS
# ============================================================

def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _jsonable(v) for k, v in data.items() if k not in RESERVED_KEYS}


def _set_field(body: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    target = body
    for part in parts[:-1]:
        nested = target.get(part)
        if not isinstance(nested, dict):
            nested = {}
            target[part] = nested
        target = nested
    leaf = parts[-1]
    if value is DELETE_FIELD:
        target.pop(leaf, None)
    elif isinstance(value, _FieldTransform):
        target[leaf] = _jsonable(value.apply(target.get(leaf)))
    else:
        target[leaf] = _jsonable(value)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive timestamps; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_dict(row: StoredDocument) -> Dict[str, Any]:
    out = copy.deepcopy(row.data or {})
    out["id"] = row.doc_id
    out["created_at"] = _aware(row.created_at)
    out["updated_at"] = _aware(row.updated_at)
    return out


# ============================================================
# STORE
# ============================================================

class DocumentStore:
    """get/add/set/update/delete/query over one organisation's documents"""

    def __init__(self, session: AsyncSession, org_id: Optional[str] = None,
                 hub: Optional[SnapshotHub] = None):
        self.session = session
        self.org_id = org_id or ORG_ID
        self.hub = hub if hub is not None else snapshot_hub
        self._depth = 0
        self._dirty: List[str] = []

    # --- transactions ---

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @asynccontextmanager
    async def transaction(self):
        """Group writes so they commit or roll back together. Nested blocks join the outer one."""
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                await self.session.rollback()
                self._dirty.clear()
            raise
        self._depth -= 1
        if self._depth == 0:
            await self._commit()

    async def _commit(self) -> None:
        if self._depth:
            return
        await self.session.commit()
        await self._publish()

    async def _publish(self) -> None:
        paths = list(dict.fromkeys(self._dirty))
        self._dirty.clear()
        for path in paths:
            if not self.hub.has_listeners(self.org_id, path):
                continue
            try:
                await self.hub.publish(self.org_id, path, lambda p=path: self.query(p))
            except Exception as e:
                # The write is already committed; a failed fan-out must not undo it
                logger.warning(f"Snapshot publish failed for {path}: {e}")

    def _touch(self, path: str) -> None:
        self._dirty.append(path)

    # --- reads ---

    async def _load(self, path: str, doc_id: str, for_update: bool = False) -> Optional[StoredDocument]:
        stmt = select(StoredDocument).where(
            StoredDocument.org_id == self.org_id,
            StoredDocument.path == path,
            StoredDocument.doc_id == doc_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, path: str, doc_id: str, for_update: bool = False) -> Optional[Dict[str, Any]]:
        row = await self._load(path, doc_id, for_update=for_update)
        return _to_dict(row) if row is not None else None

    async def query(
        self,
        path: str,
        where: Optional[Dict[str, Any]] = None,
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
        order_by: str = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return documents in a collection.

        Filtering happens in Python after loading the collection, so it is only
        suitable for collections the size of one organisation's data.
        """
        stmt = select(StoredDocument).where(
            StoredDocument.org_id == self.org_id,
            StoredDocument.path == path,
        )
        if descending:
            stmt = stmt.order_by(StoredDocument.created_at.desc(), StoredDocument.seq.desc())
        else:
            stmt = stmt.order_by(StoredDocument.created_at.asc(), StoredDocument.seq.asc())
        result = await self.session.execute(stmt)
        docs = [_to_dict(row) for row in result.scalars().all()]

        if where:
            docs = [d for d in docs if all(d.get(k) == v for k, v in where.items())]
        if predicate is not None:
            docs = [d for d in docs if predicate(d)]
        if order_by != "created_at":
            docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def count(self, path: str, where: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.query(path, where=where))

    # --- writes ---

    async def add(self, path: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Insert a document. With an explicit ``doc_id`` this is create-if-absent."""
        if doc_id is not None and await self._load(path, doc_id) is not None:
            raise DocumentExists(path, doc_id)
        doc_id = doc_id or new_uuid()
        now = utcnow()
        row = StoredDocument(
            org_id=self.org_id,
            path=path,
            doc_id=doc_id,
            data=_clean(data),
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same address
            await self.session.rollback()
            self._dirty.clear()
            raise DocumentExists(path, doc_id)
        self._touch(path)
        await self._commit()
        return doc_id

    async def set(self, path: str, doc_id: str, data: Dict[str, Any], merge: bool = True) -> Dict[str, Any]:
        """Upsert a document; ``merge`` keeps fields not present in ``data``."""
        row = await self._load(path, doc_id, for_update=True)
        if row is None:
            await self.add(path, data, doc_id=doc_id)
            return await self.get(path, doc_id)
        body = copy.deepcopy(row.data or {}) if merge else {}
        body.update(_clean(data))
        row.data = body
        row.updated_at = utcnow()
        await self.session.flush()
        self._touch(path)
        await self._commit()
        return _to_dict(row)

    async def update(self, path: str, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``patch`` into an existing document.

        Keys may be dotted paths into nested maps; values may be field
        transforms (ArrayUnion, ArrayRemove, Increment) or DELETE_FIELD, which
        are applied against the locked row.
        """
        row = await self._load(path, doc_id, for_update=True)
        if row is None:
            raise DocumentNotFound(path, doc_id)
        body = copy.deepcopy(row.data or {})
        for key, value in patch.items():
            if key in RESERVED_KEYS:
                continue
            _set_field(body, key, value)
        row.data = body
        row.updated_at = utcnow()
        await self.session.flush()
        self._touch(path)
        await self._commit()
        return _to_dict(row)

    async def delete(self, path: str, doc_id: str) -> bool:
        row = await self._load(path, doc_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        self._touch(path)
        await self._commit()
        return True

    async def delete_collection(self, path: str) -> int:
        """Hard-delete every document in a collection; returns how many were removed."""
        result = await self.session.execute(
            sa_delete(StoredDocument).where(
                StoredDocument.org_id == self.org_id,
                StoredDocument.path == path,
            )
        )
        removed = result.rowcount or 0
        self._touch(path)
        await self._commit()
        return removed


async def get_document_store(session: AsyncSession = Depends(get_db_session)) -> DocumentStore:
    """Dependency: a store bound to the request's session (FastAPI Depends)"""
    return DocumentStore(session)
