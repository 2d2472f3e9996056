from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from companion.core.auth import get_optional_user_id
from companion.features.usage import service as usage_service

router = APIRouter(prefix="/v1/usage", tags=["usage"])


@router.post("/tokens")
def record_tokens(
    payload: Any = Body(None),
    user_id: Optional[str] = Depends(get_optional_user_id),
):
    """Record token usage reported after a model call: {usage: {promptTokens, completionTokens, totalTokens}}."""
    usage = payload.get("usage") if isinstance(payload, dict) else None
    return usage_service.record_token_usage(user_id, usage)


@router.get("/limits")
def get_limits(user_id: Optional[str] = Depends(get_optional_user_id)):
    return usage_service.check_token_limits(user_id).model_dump(by_alias=True)
