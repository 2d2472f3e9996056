"""
User profile API and the account-created hook.

GET   /v1/users/me                     -> {exists, data}
PATCH /v1/users/me        {data: {...}} -> {success}
GET   /v1/users/me/emotion-character-set
POST  /v1/hooks/user-created            fired by the identity provider once per new account
"""

import hmac
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from companion.core.auth import get_optional_user_id
from companion.core.config import settings
from companion.core.errors import AuthorizationError
from companion.features.profiles import service as profile_service

logger = logging.getLogger("companion")

router = APIRouter(prefix="/v1/users", tags=["users"])
hooks_router = APIRouter(prefix="/v1/hooks", tags=["hooks"])


class UserCreatedEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    expected = settings.USER_CREATED_WEBHOOK_SECRET
    if not expected or not x_webhook_secret:
        raise AuthorizationError()
    if not hmac.compare_digest(expected.encode("utf-8"), x_webhook_secret.encode("utf-8")):
        logger.warning("hooks.bad_secret")
        raise AuthorizationError()


@router.get("/me")
def get_me(user_id: Optional[str] = Depends(get_optional_user_id)):
    return profile_service.get_user_profile(user_id)


@router.patch("/me")
def update_me(
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    data = payload.get("data") if isinstance(payload, dict) else None
    return profile_service.update_user_profile(user_id, data)


@router.get("/me/emotion-character-set")
def get_emotion_character_set(user_id: Optional[str] = Depends(get_optional_user_id)):
    return {"emotionCharacterSet": profile_service.get_emotion_character_set(user_id)}


@hooks_router.post("/user-created", dependencies=[Depends(verify_webhook_secret)])
def user_created(event: UserCreatedEvent):
    profile_service.on_user_created(
        event.uid,
        event.email,
        display_name=event.display_name,
        phone_number=event.phone_number,
    )
    return {"success": True}
