"""
companion/models/profile.py

User profile document stored at users/{uid}.

Field names are camelCase on the wire and in storage; the Python attributes
are snake_case.
"""

from datetime import datetime, timedelta
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Agreements(_Document):
    terms: str
    privacy: str
    ethics: str


class Preferences(_Document):
    tone: str = "supportive"
    theme: str = "system"
    start_page: str = "chat"
    emotion_character_set: str = "Bubba"
    emotion_icon_size: int = 64
    local_storage_enabled: bool = False


class Counter(_Document):
    lifetime: int = 0
    monthly: Dict[str, int] = Field(default_factory=dict)  # {"2024-05": 12000}


class VoiceChars(_Document):
    tts: Counter = Field(default_factory=Counter)
    stt: Counter = Field(default_factory=Counter)


class UsageCounters(_Document):
    tokens: Counter = Field(default_factory=Counter)
    voice_chars: VoiceChars = Field(default_factory=VoiceChars)


class SubscriptionRecord(_Document):
    tier: str = "free"
    activation_date: str
    expiration_date: str


class FeatureFlags(_Document):
    memory: bool = True
    tts: bool = True
    stt: bool = True
    emotional_insights: bool = True


class UserProfile(_Document):
    email: str = ""
    username: str = ""
    phone_number: str = ""
    created_at: str
    agreed_to: Agreements
    preferences: Preferences = Field(default_factory=Preferences)
    usage: UsageCounters = Field(default_factory=UsageCounters)
    subscription: SubscriptionRecord
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @classmethod
    def default_for(
        cls,
        *,
        email: str,
        created_at: datetime,
        timestamp: str,
        expires_at: str,
        username: str = "",
        phone_number: str = "",
        emotion_character_set: str = "Bubba",
    ) -> "UserProfile":
        """Profile for a brand-new account; consents are stamped with the creation time."""
        return cls(
            email=email,
            username=username,
            phone_number=phone_number,
            created_at=timestamp,
            agreed_to=Agreements(terms=timestamp, privacy=timestamp, ethics=timestamp),
            preferences=Preferences(emotion_character_set=emotion_character_set),
            subscription=SubscriptionRecord(tier="free", activation_date=timestamp, expiration_date=expires_at),
        )

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


def subscription_expiry(activated_at: datetime, period_days: int) -> datetime:
    return activated_at + timedelta(days=period_days)
