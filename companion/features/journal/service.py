"""
Journal persistence service.

Entries live at journals/{uid}/entries/{entryId}. Every operation checks the
caller's identity first, then validates its payload, then makes exactly one
store call.

- save_journal_entry(uid, entry_data)         plaintext field bag
- save_encrypted_journal(uid, encrypted_data) opaque client-encrypted string
- load_journal_entries(uid)                   newest first, whole collection
- edit_entry(uid, entry_id, fields)          merge edited fields, stamp lastEdited
- move_entry_to_trash / recover_entry / delete_entry_permanently

Entry ids are derived from the write time. With the "timestamp" strategy the
id is the bare ISO timestamp, so two saves from one user in the same
millisecond share an id and the later write replaces the earlier one. The
default "unique" strategy appends a random suffix, which keeps ids sortable
and makes collisions practically impossible.
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Optional

from companion.core.auth import require_user_id
from companion.core.config import settings
from companion.core.documents import (
    DocumentNotFound,
    DocumentStoreError,
    collection_path,
    delete_document,
    document_path,
    iso_timestamp,
    list_documents,
    set_document,
    update_document,
    utc_now,
)
from companion.core.errors import NotFoundError, StoreError, ValidationError
from companion.core.logging import log_event

logger = logging.getLogger("companion")

STATUS_ACTIVE = "active"
STATUS_TRASH = "trash"
ENTRY_STATUSES = (STATUS_ACTIVE, STATUS_TRASH)
WELCOME_ENTRY_ID = "welcome"

# Written by the server only; an edit may not set them
SERVER_FIELDS = frozenset({
    "id", "createdAt", "updatedAt", "status", "deleted", "deletedAt",
    "recoveredAt", "lastEdited", "lastEditedBy",
})


def entries_collection(uid: str) -> str:
    return collection_path("journals", uid, "entries")


def entry_path(uid: str, entry_id: str) -> str:
    return document_path("journals", uid, "entries", entry_id)


def new_entry_id(now: datetime, strategy: Optional[str] = None) -> str:
    timestamp = iso_timestamp(now)
    if (strategy or settings.JOURNAL_ENTRY_ID_STRATEGY) == "timestamp":
        return timestamp
    return f"{timestamp}-{secrets.token_hex(4)}"


def _write_entry(uid: str, fields: Dict[str, Any], now: Optional[datetime], entry_id: Optional[str] = None) -> str:
    now = now or utc_now()
    entry_id = entry_id or new_entry_id(now)
    # server createdAt always wins over a caller-supplied one
    data = {**fields, "createdAt": iso_timestamp(now)}
    set_document(entry_path(uid, entry_id), data, created_at=now)
    return entry_id


def save_journal_entry(uid: Optional[str], entry_data: Any, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    uid = require_user_id(uid)
    if entry_data is None or not isinstance(entry_data, dict):
        raise ValidationError("Invalid request: entryData must be an object")

    try:
        entry_id = _write_entry(uid, entry_data, now)
    except DocumentStoreError:
        log_event("error", "journal.save_failed", user_id=uid, error_code="store_error", exc_info=True)
        raise StoreError("Failed to save journal entry")

    log_event("info", "journal.entry_saved", user_id=uid, entry_id=entry_id, event_type="journal.save")
    return {"success": True}


def save_encrypted_journal(uid: Optional[str], encrypted_data: Any, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Store an entry the client encrypted before sending.

    The payload is kept verbatim; this service never sees plaintext.
    """
    uid = require_user_id(uid)
    if not isinstance(encrypted_data, str) or not encrypted_data:
        raise ValidationError("Invalid request: encryptedData must be a non-empty string")

    try:
        entry_id = _write_entry(uid, {"encryptedData": encrypted_data}, now)
    except DocumentStoreError:
        log_event("error", "journal.encrypted_save_failed", user_id=uid, error_code="store_error", exc_info=True)
        raise StoreError("Failed to save journal")

    log_event("info", "journal.entry_saved", user_id=uid, entry_id=entry_id, event_type="journal.save_encrypted")
    return {"success": True}


def _status_predicate(status: Optional[str]):
    if status is None:
        return None
    if status not in ENTRY_STATUSES:
        raise ValidationError(f"Invalid request: status must be one of {', '.join(ENTRY_STATUSES)}")
    # entries written before trash existed carry no status and count as active
    return lambda data: (data.get("status") or STATUS_ACTIVE) == status


def load_journal_entries(
    uid: Optional[str],
    *,
    status: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Return the caller's entries ordered by createdAt, newest first.

    Without `status` or `limit` the whole collection is returned. Either the
    full ordered set comes back or the call fails.
    """
    uid = require_user_id(uid)
    predicate = _status_predicate(status)
    if limit is not None and limit < 1:
        raise ValidationError("Invalid request: limit must be positive")

    try:
        docs = list_documents(entries_collection(uid), descending=True, predicate=predicate, limit=limit)
    except DocumentStoreError:
        log_event("error", "journal.load_failed", user_id=uid, error_code="store_error", exc_info=True)
        raise StoreError("Failed to load journal entries")

    entries = [{**doc.data, "id": doc.id} for doc in docs]
    return {"success": True, "entries": entries}


def _transition(uid: Optional[str], entry_id: str, fields: Dict[str, Any], action: str) -> Dict[str, Any]:
    uid = require_user_id(uid)
    if not entry_id or not entry_id.strip():
        raise ValidationError("Invalid request: entryId is required")

    try:
        update_document(entry_path(uid, entry_id), fields)
    except DocumentNotFound:
        raise NotFoundError("Journal entry not found")
    except DocumentStoreError:
        log_event("error", f"journal.{action}_failed", user_id=uid, entry_id=entry_id, error_code="store_error", exc_info=True)
        raise StoreError(f"Failed to {action} journal entry")

    log_event("info", f"journal.entry_{action}", user_id=uid, entry_id=entry_id)
    return {"success": True}


def edit_entry(
    uid: Optional[str],
    entry_id: str,
    fields: Any,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Merge edited fields (typically `encryptedUserText` and `emotion`) into an
    existing entry and stamp who edited it and when.
    """
    uid = require_user_id(uid)
    if not isinstance(fields, dict) or not fields:
        raise ValidationError("Invalid request: entryData must be a non-empty object")
    reserved = SERVER_FIELDS.intersection(fields)
    if reserved:
        raise ValidationError(f"Invalid request: cannot edit {', '.join(sorted(reserved))}")

    stamp = iso_timestamp(now)
    return _transition(
        uid,
        entry_id,
        {**fields, "lastEdited": stamp, "lastEditedBy": uid, "updatedAt": stamp},
        "edit",
    )


def move_entry_to_trash(uid: Optional[str], entry_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    stamp = iso_timestamp(now)
    return _transition(
        uid,
        entry_id,
        {"status": STATUS_TRASH, "deleted": True, "deletedAt": stamp, "updatedAt": stamp},
        "trash",
    )


def recover_entry(uid: Optional[str], entry_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    stamp = iso_timestamp(now)
    return _transition(
        uid,
        entry_id,
        {"status": STATUS_ACTIVE, "deleted": False, "recoveredAt": stamp, "updatedAt": stamp},
        "recover",
    )


def delete_entry_permanently(uid: Optional[str], entry_id: str) -> Dict[str, Any]:
    uid = require_user_id(uid)
    if not entry_id or not entry_id.strip():
        raise ValidationError("Invalid request: entryId is required")

    try:
        deleted = delete_document(entry_path(uid, entry_id))
    except DocumentStoreError:
        log_event("error", "journal.delete_failed", user_id=uid, entry_id=entry_id, error_code="store_error", exc_info=True)
        raise StoreError("Failed to permanently delete journal entry")

    if not deleted:
        raise NotFoundError("Journal entry not found")
    log_event("info", "journal.entry_deleted", user_id=uid, entry_id=entry_id)
    return {"success": True}


def create_welcome_entry(uid: str, *, now: Optional[datetime] = None) -> str:
    """
    Seed a placeholder entry for a new account (used when WELCOME_JOURNAL_ENTRY is on).

    The id is fixed, so a retried account hook rewrites the same entry.
    """
    try:
        entry_id = _write_entry(
            uid,
            {
                "encryptedData": "",
                "emotion": "joyful",
                "note": "Welcome journal created automatically.",
                "status": STATUS_ACTIVE,
                "deleted": False,
                "version": 1,
                "usage": {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0},
            },
            now,
            entry_id=WELCOME_ENTRY_ID,
        )
    except DocumentStoreError:
        logger.error("journal.welcome_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Failed to create welcome journal entry")
    logger.info("journal.welcome_created", extra={"user_id": uid, "entry_id": entry_id})
    return entry_id
