from fastapi import APIRouter

from companion.features.subscriptions.service import get_tier_benefits, list_tiers

router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])


@router.get("/tiers")
def get_tiers():
    """Static tier catalog; no auth required."""
    return {"tiers": [tier.model_dump(by_alias=True) for tier in list_tiers()]}


@router.get("/tiers/{tier}")
def get_tier(tier: str):
    return get_tier_benefits(tier).model_dump(by_alias=True)
