from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TokenUsage(BaseModel):
    """Token counts reported by the caller after one model call."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = Field(0, ge=0)
    completion_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)


class UsageLimits(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    daily_remaining: int
    monthly_remaining: int
    daily_used: int
    monthly_used: int
    daily_limit: int
    monthly_limit: int


class LimitStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_use_service: bool
    message: Optional[str] = None
    limits: UsageLimits
