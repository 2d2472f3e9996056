"""
companion/features/subscriptions/service.py

Static subscription tier catalog (free, plus, pro).

Read-only reference data; nothing here touches the document store.
"""

from typing import Dict, List, Optional

from companion.core.errors import ValidationError
from companion.models.subscription import TierBenefits, UNLIMITED

DEFAULT_TIER = "free"

TIER_CATALOG: Dict[str, TierBenefits] = {
    "free": TierBenefits(
        tier="free",
        chats_per_day=10,
        tokens_per_month=10000,
        mood_tracking="basic",
        journal_entries=50,
    ),
    "plus": TierBenefits(
        tier="plus",
        chats_per_day=30,
        tokens_per_month=50000,
        mood_tracking="enhanced",
        journal_entries=500,
        premium_features=["Cross-device sync"],
    ),
    "pro": TierBenefits(
        tier="pro",
        chats_per_day=100,
        tokens_per_month=200000,
        mood_tracking="advanced",
        journal_entries=UNLIMITED,
        premium_features=["All premium features", "Advanced AI insights"],
    ),
}


def list_tiers() -> List[TierBenefits]:
    return list(TIER_CATALOG.values())


def get_tier_benefits(tier: str) -> TierBenefits:
    """Look up a tier by name; unknown names are a validation error."""
    benefits = TIER_CATALOG.get((tier or "").strip().lower())
    if benefits is None:
        raise ValidationError(f"Unknown subscription tier: {tier}")
    return benefits


def resolve_tier(tier: Optional[str]) -> TierBenefits:
    """Tier for a stored profile value, falling back to free for missing or unknown tiers."""
    return TIER_CATALOG.get((tier or "").strip().lower(), TIER_CATALOG[DEFAULT_TIER])
