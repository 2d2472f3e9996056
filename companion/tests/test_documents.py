"""Tests for the document store layer."""

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError

from companion.core import database
from companion.core import documents as documents_module
from companion.core.documents import (
    DocumentNotFound,
    DocumentStoreError,
    InvalidPathError,
    collection_path,
    delete_document,
    document_path,
    get_document,
    iso_timestamp,
    list_documents,
    run_in_transaction,
    set_document,
    split_document_path,
    update_document,
    upsert_statement,
)
from companion.core.errors import ValidationError

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_path_helpers():
    assert document_path("users", "u1") == "users/u1"
    assert collection_path("journals", "u1", "entries") == "journals/u1/entries"
    assert split_document_path("journals/u1/entries/e1") == ("journals/u1/entries", "e1")


@pytest.mark.parametrize("path", ["users", "journals/u1/entries", "users//x", ""])
def test_invalid_document_paths(path):
    with pytest.raises(InvalidPathError):
        split_document_path(path)


def test_invalid_path_is_a_validation_error():
    with pytest.raises(ValidationError):
        collection_path("users", "u1")


def test_iso_timestamp_has_millisecond_precision():
    moment = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert iso_timestamp(moment) == "2024-05-01T12:00:00.123Z"
    # naive datetimes are treated as UTC
    assert iso_timestamp(datetime(2024, 5, 1, 12)) == "2024-05-01T12:00:00.000Z"


def test_set_and_get():
    set_document("users/u1", {"email": "a@example.com"}, created_at=T0)
    doc = get_document("users/u1")
    assert doc.id == "u1"
    assert doc.data == {"email": "a@example.com"}
    assert doc.created_at == T0
    assert get_document("users/missing") is None


def test_set_overwrites_without_merge():
    set_document("users/u1", {"a": 1, "b": 2})
    set_document("users/u1", {"c": 3})
    assert get_document("users/u1").data == {"c": 3}
    assert len(list_documents("users")) == 1


def test_update_merges_top_level_fields():
    set_document("users/u1", {"a": 1, "nested": {"x": 1}})
    update_document("users/u1", {"b": 2, "nested": {"y": 2}})
    assert get_document("users/u1").data == {"a": 1, "b": 2, "nested": {"y": 2}}


def test_update_missing_document():
    with pytest.raises(DocumentNotFound):
        update_document("users/nobody", {"a": 1})


def test_delete():
    set_document("users/u1", {"a": 1})
    assert delete_document("users/u1") is True
    assert delete_document("users/u1") is False


def test_list_ordering_predicate_and_limit():
    for i in range(5):
        set_document(f"journals/u1/entries/e{i}", {"n": i, "even": i % 2 == 0}, created_at=T0 + timedelta(seconds=i))
    set_document("journals/u2/entries/other", {"n": 99}, created_at=T0)

    newest = list_documents("journals/u1/entries")
    assert [d.data["n"] for d in newest] == [4, 3, 2, 1, 0]

    oldest = list_documents("journals/u1/entries", descending=False, limit=2)
    assert [d.data["n"] for d in oldest] == [0, 1]

    evens = list_documents("journals/u1/entries", predicate=lambda data: data["even"], limit=2)
    assert [d.data["n"] for d in evens] == [4, 2]


def test_transaction_rolls_back_on_error():
    def _work(tx):
        tx.set("users/u1", {"a": 1})
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        run_in_transaction(_work)
    assert get_document("users/u1") is None


def test_database_errors_become_store_errors(monkeypatch):
    @contextmanager
    def _broken_session():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        yield

    monkeypatch.setattr(documents_module, "get_db_session", _broken_session)
    with pytest.raises(DocumentStoreError):
        get_document("users/u1")


def _row_values(path="users/u1"):
    return dict(path=path, collection="users", doc_id="u1", data={"a": 1}, created_at=T0, updated_at=T0)


def test_upsert_statement_for_postgresql_and_sqlite():
    pg_sql = str(upsert_statement("postgresql", _row_values()).compile(dialect=postgresql.dialect()))
    assert "ON CONFLICT (path) DO UPDATE" in pg_sql
    assert "data = excluded.data" in pg_sql

    sqlite_sql = str(upsert_statement("sqlite", _row_values()).compile(dialect=sqlite.dialect()))
    assert "ON CONFLICT (path) DO UPDATE" in sqlite_sql

    assert upsert_statement("mssql", _row_values()) is None


def test_concurrent_sets_to_one_path_all_succeed():
    workers = 8
    barrier = threading.Barrier(workers)
    errors = []

    def _write(n):
        barrier.wait()
        try:
            set_document("users/u1", {"writer": n})
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_write, args=(n,)) for n in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    docs = list_documents("users")
    assert len(docs) == 1
    assert docs[0].data["writer"] in range(workers)


def test_update_locks_row_for_concurrent_merges():
    set_document("users/u1", {})
    workers = 8
    barrier = threading.Barrier(workers)

    def _merge(n):
        barrier.wait()
        update_document("users/u1", {f"k{n}": n})

    threads = [threading.Thread(target=_merge, args=(n,)) for n in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert get_document("users/u1").data == {f"k{n}": n for n in range(workers)}


def test_dispose_engine_resets_schema_flag():
    get_document("users/u1")
    assert database._schema_ready is True
    database.dispose_engine()
    assert database._schema_ready is False
