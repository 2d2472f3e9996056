"""
companion/models/subscription.py

Subscription tiers and the quota attributes attached to each.
"""

from typing import List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SubscriptionTier = Literal["free", "plus", "pro"]
MoodTracking = Literal["basic", "enhanced", "advanced"]

UNLIMITED = "unlimited"


class TierBenefits(BaseModel):
    """
    Quotas and features for one tier.

    `journal_entries` is either a count or the string "unlimited".
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    tier: SubscriptionTier
    chats_per_day: int
    tokens_per_month: int
    mood_tracking: MoodTracking
    journal_entries: Union[int, Literal["unlimited"]]
    premium_features: List[str] = Field(default_factory=list)

    @property
    def unlimited_journal(self) -> bool:
        return self.journal_entries == UNLIMITED
