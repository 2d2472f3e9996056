"""
User profile service.

- on_user_created(uid, email)          bootstrap, fired once per new account
- get_user_profile(uid)
- update_user_profile(uid, data)
- get_emotion_character_set(uid)
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from companion.core.auth import require_user_id
from companion.core.config import settings
from companion.core.documents import (
    DocumentNotFound,
    DocumentStoreError,
    document_path,
    get_document,
    iso_timestamp,
    set_document,
    update_document,
    utc_now,
)
from companion.core.errors import NotFoundError, StoreError, ValidationError
from companion.models.profile import UserProfile, subscription_expiry

logger = logging.getLogger("companion")

# Owned by billing/usage collaborators, not by the profile owner
PROTECTED_FIELDS = {"createdAt", "subscription", "usage"}


def user_path(uid: str) -> str:
    return document_path("users", uid)


def journal_root_path(uid: str) -> str:
    return document_path("journals", uid)


def build_default_profile(
    email: str,
    *,
    now: datetime,
    display_name: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> UserProfile:
    expires = subscription_expiry(now, settings.SUBSCRIPTION_PERIOD_DAYS)
    return UserProfile.default_for(
        email=email or "",
        created_at=now,
        timestamp=iso_timestamp(now),
        expires_at=iso_timestamp(expires),
        username=display_name or "",
        phone_number=phone_number or "",
        emotion_character_set=settings.DEFAULT_EMOTION_CHARACTER_SET,
    )


def on_user_created(
    uid: str,
    email: Optional[str],
    *,
    display_name: Optional[str] = None,
    phone_number: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Write the default profile for a newly created account.

    A repeat call for the same uid overwrites the profile (last write wins,
    no merge). Store failures propagate so the calling hook can retry.
    """
    if not uid or not uid.strip():
        raise ValidationError("Invalid request: uid is required")

    now = now or utc_now()
    profile = build_default_profile(email or "", now=now, display_name=display_name, phone_number=phone_number)

    try:
        set_document(user_path(uid), profile.to_document(), created_at=now)
        set_document(journal_root_path(uid), {"initializedAt": iso_timestamp(now)}, created_at=now)
    except DocumentStoreError:
        logger.error("profile.bootstrap_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Failed to create user profile")

    logger.info("profile.created", extra={"user_id": uid})

    if settings.WELCOME_JOURNAL_ENTRY:
        from companion.features.journal.service import create_welcome_entry
        create_welcome_entry(uid, now=now)


def get_user_profile(uid: Optional[str]) -> Dict[str, Any]:
    uid = require_user_id(uid)
    try:
        doc = get_document(user_path(uid))
    except DocumentStoreError:
        logger.error("profile.read_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Failed to get user document")
    if doc is None:
        return {"exists": False, "data": None}
    return {"exists": True, "data": doc.data}


def _strip_none(value: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {}
    for key, item in value.items():
        if item is None:
            continue
        cleaned[key] = _strip_none(item) if isinstance(item, dict) else item
    return cleaned


def update_user_profile(uid: Optional[str], data: Any, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Merge caller-supplied fields into an existing profile.

    Top-level keys replace stored values wholesale; None values are dropped.
    """
    uid = require_user_id(uid)
    if not isinstance(data, dict) or not data:
        raise ValidationError("Invalid request: data must be a non-empty object")
    protected = PROTECTED_FIELDS.intersection(data)
    if protected:
        raise ValidationError(f"Invalid request: cannot update {', '.join(sorted(protected))}")

    fields = _strip_none(data)
    fields["updatedAt"] = iso_timestamp(now)

    try:
        update_document(user_path(uid), fields)
    except DocumentNotFound:
        raise NotFoundError("User profile not found")
    except DocumentStoreError:
        logger.error("profile.update_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Failed to update user document")

    return {"success": True}


def get_emotion_character_set(uid: Optional[str]) -> str:
    profile = get_user_profile(uid)
    default = settings.DEFAULT_EMOTION_CHARACTER_SET
    if not profile["exists"]:
        return default
    preferences = profile["data"].get("preferences") or {}
    return preferences.get("emotionCharacterSet") or default
