from app.models.user import User
from app.models.campaign import Campaign, MetaConnection, CampaignState, Conversation
from app.models.ad import (
    Ad, AdCreative, AdCopyVariation, AdDestination,
    AdBudget, AdTargetLocation, AdPublishRecord,
)

__all__ = [
    "User",
    "Campaign",
    "MetaConnection",
    "CampaignState",
    "Conversation",
    # Ads
    "Ad",
    "AdCreative",
    "AdCopyVariation",
    "AdDestination",
    "AdBudget",
    "AdTargetLocation",
    "AdPublishRecord",
]
