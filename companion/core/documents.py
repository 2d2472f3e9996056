"""
Document store on top of the `documents` table.

Documents are addressed by slash-separated paths with an even number of
segments (`users/u1`, `journals/u1/entries/e1`); collections by an odd number
(`journals/u1/entries`). A document's data is a JSON object.

- get_document(path)
- set_document(path, data)      full overwrite, last write wins
- update_document(path, fields) shallow merge, document must exist
- delete_document(path)
- list_documents(collection)    ordered by created_at (desc by default)
- run_in_transaction(fn)        several reads/writes in one DB transaction
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, insert, update, delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from companion.core.database import get_db_session, documents, ensure_schema
from companion.core.errors import ValidationError

T = TypeVar("T")

# Dialects with INSERT .. ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DocumentStoreError(Exception):
    """Raised when the underlying database read or write fails."""


class DocumentNotFound(DocumentStoreError, LookupError):
    pass


class InvalidPathError(ValidationError):
    """Malformed document or collection path."""


class StoredDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    path: str
    data: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """Render a UTC timestamp as a sortable ISO string with millisecond precision."""
    moment = _as_utc(moment or utc_now())
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _segments(path: str) -> List[str]:
    parts = [p for p in path.strip("/").split("/")]
    if not parts or any(not p for p in parts):
        raise InvalidPathError(f"Invalid path: {path!r}")
    return parts


def document_path(*segments: str) -> str:
    path = "/".join(segments)
    split_document_path(path)
    return path


def collection_path(*segments: str) -> str:
    path = "/".join(segments)
    if len(_segments(path)) % 2 != 1:
        raise InvalidPathError(f"Not a collection path: {path!r}")
    return path


def split_document_path(path: str) -> Tuple[str, str]:
    """Return (collection, doc_id) for a document path."""
    parts = _segments(path)
    if len(parts) % 2 != 0:
        raise InvalidPathError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def upsert_statement(dialect_name: str, values: Dict[str, Any]):
    """
    Insert-or-replace for one document row, or None when the dialect has no upsert.

    Everything but the path is overwritten, so concurrent writers to the same
    path never hit a unique violation and the last commit wins.
    """
    dialect_insert = _UPSERT_INSERTS.get(dialect_name)
    if dialect_insert is None:
        return None
    stmt = dialect_insert(documents).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[documents.c.path],
        set_={
            "collection": stmt.excluded.collection,
            "doc_id": stmt.excluded.doc_id,
            "data": stmt.excluded.data,
            "created_at": stmt.excluded.created_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )


def _row_to_document(row) -> StoredDocument:
    return StoredDocument(
        id=row.doc_id,
        path=row.path,
        data=dict(row.data or {}),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


class Transaction:
    """Document operations bound to a single database session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, path: str, *, for_update: bool = False) -> Optional[StoredDocument]:
        """
        Read one document. `for_update` locks the row until the transaction
        ends (SELECT .. FOR UPDATE; SQLite already holds the write lock).
        """
        split_document_path(path)
        query = select(documents).where(documents.c.path == path)
        if for_update:
            query = query.with_for_update()
        row = self.session.execute(query).first()
        return _row_to_document(row) if row else None

    def set(self, path: str, data: Dict[str, Any], *, created_at: Optional[datetime] = None) -> StoredDocument:
        collection, doc_id = split_document_path(path)
        now = utc_now()
        created = _as_utc(created_at) if created_at else now
        values = dict(
            path=path,
            collection=collection,
            doc_id=doc_id,
            data=dict(data),
            created_at=created,
            updated_at=now,
        )
        stmt = upsert_statement(self.session.get_bind().dialect.name, values)
        if stmt is None:
            # plain overwrite, nothing merged
            self.session.execute(delete(documents).where(documents.c.path == path))
            stmt = insert(documents).values(**values)
        self.session.execute(stmt)
        return StoredDocument(id=doc_id, path=path, data=dict(data), created_at=created, updated_at=now)

    def update(self, path: str, fields: Dict[str, Any]) -> StoredDocument:
        existing = self.get(path, for_update=True)
        if existing is None:
            raise DocumentNotFound(path)
        merged = {**existing.data, **fields}
        now = utc_now()
        self.session.execute(
            update(documents)
            .where(documents.c.path == path)
            .values(data=merged, updated_at=now)
        )
        return StoredDocument(
            id=existing.id,
            path=path,
            data=merged,
            created_at=existing.created_at,
            updated_at=now,
        )

    def delete(self, path: str) -> bool:
        split_document_path(path)
        result = self.session.execute(delete(documents).where(documents.c.path == path))
        return bool(result.rowcount)

    def list(
        self,
        collection: str,
        *,
        descending: bool = True,
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        collection_path(collection)
        if descending:
            order = (documents.c.created_at.desc(), documents.c.doc_id.desc())
        else:
            order = (documents.c.created_at.asc(), documents.c.doc_id.asc())
        query = select(documents).where(documents.c.collection == collection).order_by(*order)
        if limit is not None and predicate is None:
            query = query.limit(limit)
        docs = [_row_to_document(row) for row in self.session.execute(query).all()]
        if predicate is not None:
            docs = [doc for doc in docs if predicate(doc.data)]
            if limit is not None:
                docs = docs[:limit]
        return docs


def run_in_transaction(fn: Callable[[Transaction], T]) -> T:
    """Run `fn` inside one database transaction; commit on success, roll back on error."""
    try:
        ensure_schema()
        with get_db_session() as session:
            return fn(Transaction(session))
    except SQLAlchemyError as exc:
        raise DocumentStoreError(str(exc)) from exc


def get_document(path: str) -> Optional[StoredDocument]:
    return run_in_transaction(lambda tx: tx.get(path))


def set_document(path: str, data: Dict[str, Any], *, created_at: Optional[datetime] = None) -> StoredDocument:
    return run_in_transaction(lambda tx: tx.set(path, data, created_at=created_at))


def update_document(path: str, fields: Dict[str, Any]) -> StoredDocument:
    return run_in_transaction(lambda tx: tx.update(path, fields))


def delete_document(path: str) -> bool:
    return run_in_transaction(lambda tx: tx.delete(path))


def list_documents(
    collection: str,
    *,
    descending: bool = True,
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
    limit: Optional[int] = None,
) -> List[StoredDocument]:
    return run_in_transaction(
        lambda tx: tx.list(collection, descending=descending, predicate=predicate, limit=limit)
    )
