"""
Journal API.

POST   /v1/journal/entries                 {entryData: object}       -> {success}
POST   /v1/journal/encrypted               {encryptedData: string}   -> {success}   (app check)
GET    /v1/journal/entries[?status=&limit=]                          -> {success, entries}
PATCH  /v1/journal/entries/{entry_id}      {entryData: object}       -> {success}
POST   /v1/journal/entries/{entry_id}/trash
POST   /v1/journal/entries/{entry_id}/recover
DELETE /v1/journal/entries/{entry_id}

Bodies are read loosely so that a call without identity is always rejected
as Unauthorized before its payload is looked at.
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from companion.core.auth import get_optional_user_id, require_app_check
from companion.features.journal import service as journal_service

router = APIRouter(prefix="/v1/journal", tags=["journal"])


def _field(payload: Any, name: str) -> Any:
    if isinstance(payload, dict):
        return payload.get(name)
    return None


@router.post("/entries")
def save_entry(
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    return journal_service.save_journal_entry(user_id, _field(payload, "entryData"))


@router.post("/encrypted", dependencies=[Depends(require_app_check)])
def save_encrypted(
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    return journal_service.save_encrypted_journal(user_id, _field(payload, "encryptedData"))


@router.get("/entries")
def load_entries(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    return journal_service.load_journal_entries(user_id, status=status, limit=limit)


@router.patch("/entries/{entry_id}")
def edit_entry(
    entry_id: str,
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    return journal_service.edit_entry(user_id, entry_id, _field(payload, "entryData"))


@router.post("/entries/{entry_id}/trash")
def trash_entry(entry_id: str, user_id: Optional[str] = Depends(get_optional_user_id)):
    return journal_service.move_entry_to_trash(user_id, entry_id)


@router.post("/entries/{entry_id}/recover")
def recover_entry(entry_id: str, user_id: Optional[str] = Depends(get_optional_user_id)):
    return journal_service.recover_entry(user_id, entry_id)


@router.delete("/entries/{entry_id}")
def delete_entry(entry_id: str, user_id: Optional[str] = Depends(get_optional_user_id)):
    return journal_service.delete_entry_permanently(user_id, entry_id)
