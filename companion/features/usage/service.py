"""
companion/features/usage/service.py

Token usage accounting and tier limit checks.

Handles:
- Aggregating reported token usage into users/{uid}/stats/tokenUsage
  (daily, monthly and lifetime buckets) plus a per-call history record
- Mirroring lifetime/monthly token counts onto the user profile
- Deterministic limit checks against the subscription tier catalog
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from companion.core.auth import require_user_id
from companion.core.documents import (
    DocumentStoreError,
    Transaction,
    document_path,
    iso_timestamp,
    run_in_transaction,
    utc_now,
)
from companion.core.errors import NotFoundError, StoreError, ValidationError
from companion.features.profiles.service import user_path
from companion.features.subscriptions.service import resolve_tier
from companion.models.usage import LimitStatus, TokenUsage, UsageLimits

logger = logging.getLogger("companion")

_EMPTY_BUCKET = {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0, "count": 0}


def stats_path(uid: str) -> str:
    return document_path("users", uid, "stats", "tokenUsage")


def history_path(uid: str, record_id: str) -> str:
    return document_path("users", uid, "tokenHistory", record_id)


def day_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def month_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def _parse_usage(usage: Union[TokenUsage, Dict[str, Any], None]) -> TokenUsage:
    if isinstance(usage, TokenUsage):
        parsed = usage
    elif isinstance(usage, dict):
        try:
            parsed = TokenUsage.model_validate(usage)
        except PydanticValidationError:
            raise ValidationError("Invalid request: malformed token usage")
    else:
        raise ValidationError("Invalid request: token usage data is required")
    if parsed.total_tokens <= 0:
        raise ValidationError("Invalid request: token usage data is required")
    return parsed


def _add(bucket: Optional[Dict[str, Any]], usage: TokenUsage, stamp: str) -> Dict[str, Any]:
    current = {**_EMPTY_BUCKET, **(bucket or {})}
    return {
        "promptTokens": current["promptTokens"] + usage.prompt_tokens,
        "completionTokens": current["completionTokens"] + usage.completion_tokens,
        "totalTokens": current["totalTokens"] + usage.total_tokens,
        "count": current["count"] + 1,
        "lastUpdated": stamp,
    }


def record_token_usage(
    uid: Optional[str],
    usage: Union[TokenUsage, Dict[str, Any], None],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Add one call's token usage to the caller's aggregates.

    The stats read-modify-write, the history record and the profile counters
    are written in a single database transaction, with the stats and profile
    rows locked from read to commit so concurrent calls serialize.
    """
    uid = require_user_id(uid)
    parsed = _parse_usage(usage)
    now = now or utc_now()
    stamp = iso_timestamp(now)
    today, month = day_key(now), month_key(now)

    def _apply(tx: Transaction) -> None:
        # lock order: profile, then stats (the profile row predates the first stats write)
        profile = tx.get(user_path(uid), for_update=True)
        existing = tx.get(stats_path(uid), for_update=True)
        data = dict(existing.data) if existing else {}
        daily = dict(data.get("daily") or {})
        monthly = dict(data.get("monthly") or {})
        daily[today] = _add(daily.get(today), parsed, stamp)
        monthly[month] = _add(monthly.get(month), parsed, stamp)
        tx.set(
            stats_path(uid),
            {"daily": daily, "monthly": monthly, "lifetime": _add(data.get("lifetime"), parsed, stamp)},
            created_at=existing.created_at if existing else now,
        )

        tx.set(
            history_path(uid, f"{stamp}-{secrets.token_hex(4)}"),
            {**parsed.model_dump(by_alias=True), "created": stamp},
            created_at=now,
        )

        if profile is not None:
            usage_counters = dict(profile.data.get("usage") or {})
            tokens = dict(usage_counters.get("tokens") or {})
            tokens_monthly = dict(tokens.get("monthly") or {})
            tokens_monthly[month] = tokens_monthly.get(month, 0) + parsed.total_tokens
            tokens["lifetime"] = tokens.get("lifetime", 0) + parsed.total_tokens
            tokens["monthly"] = tokens_monthly
            usage_counters["tokens"] = tokens
            tx.update(user_path(uid), {"usage": usage_counters})

    try:
        run_in_transaction(_apply)
    except DocumentStoreError:
        logger.error("usage.record_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Error recording token usage")

    logger.info("usage.recorded", extra={"user_id": uid, "event_type": "usage.tokens"})
    return {"success": True}


def check_token_limits(uid: Optional[str], *, now: Optional[datetime] = None) -> LimitStatus:
    """Compare today's chat count and this month's tokens with the caller's tier limits."""
    uid = require_user_id(uid)
    now = now or utc_now()

    try:
        profile, stats = run_in_transaction(lambda tx: (tx.get(user_path(uid)), tx.get(stats_path(uid))))
    except DocumentStoreError:
        logger.error("usage.check_failed", exc_info=True, extra={"user_id": uid})
        raise StoreError("Error checking token limits")

    if profile is None:
        raise NotFoundError("User document not found")

    tier = resolve_tier((profile.data.get("subscription") or {}).get("tier"))
    daily_limit = tier.chats_per_day
    monthly_limit = tier.tokens_per_month

    usage_data = stats.data if stats else {}
    daily_used = ((usage_data.get("daily") or {}).get(day_key(now)) or {}).get("count", 0)
    monthly_used = ((usage_data.get("monthly") or {}).get(month_key(now)) or {}).get("totalTokens", 0)

    limits = UsageLimits(
        daily_remaining=max(0, daily_limit - daily_used),
        monthly_remaining=max(0, monthly_limit - monthly_used),
        daily_used=daily_used,
        monthly_used=monthly_used,
        daily_limit=daily_limit,
        monthly_limit=monthly_limit,
    )

    if daily_used >= daily_limit:
        return LimitStatus(
            can_use_service=False,
            message=f"You've reached your daily chat limit ({daily_limit}). This will reset at midnight.",
            limits=limits,
        )
    if monthly_used >= monthly_limit:
        return LimitStatus(
            can_use_service=False,
            message=(
                f"You've reached your monthly token limit ({monthly_limit}). "
                "Consider upgrading your plan for more tokens."
            ),
            limits=limits,
        )
    return LimitStatus(can_use_service=True, limits=limits)
