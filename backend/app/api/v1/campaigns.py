import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.ad import Ad
from app.models.campaign import Campaign
from app.models.user import User
from app.schemas.campaign import (
    AdResponse,
    CampaignResponse,
    CreateCampaignRequest,
    RenameCampaignRequest,
)
from app.schemas.common import Envelope, ok
from app.services import campaigns as campaign_service
from app.utils.pagination import PaginatedResponse, PaginationParams

router = APIRouter()


@router.post("", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    data: CreateCampaignRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    campaign = await campaign_service.create_campaign(
        db,
        user,
        name=data.name,
        goal=data.goal,
        daily_budget=data.daily_budget,
        currency=data.currency,
        initial_prompt=data.initial_prompt,
    )
    return ok({"campaign": CampaignResponse.model_validate(campaign)})


@router.get("", response_model=Envelope)
async def list_campaigns(
    params: PaginationParams = Depends(PaginationParams.from_query),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    total = (
        await db.execute(select(func.count()).select_from(Campaign).where(Campaign.user_id == user.id))
    ).scalar_one()
    result = await db.execute(
        select(Campaign)
        .where(Campaign.user_id == user.id)
        .order_by(Campaign.created_at.desc())
        .offset(params.offset)
        .limit(params.limit)
    )
    items = [CampaignResponse.model_validate(c) for c in result.scalars().all()]
    return ok(PaginatedResponse.create(items=items, total=total, params=params))


@router.get("/{campaign_id}", response_model=Envelope)
async def get_campaign(
    campaign_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    campaign = await campaign_service.get_owned_campaign(db, campaign_id, user)
    return ok({"campaign": CampaignResponse.model_validate(campaign)})


@router.patch("/{campaign_id}", response_model=Envelope)
async def rename_campaign(
    campaign_id: uuid.UUID,
    data: RenameCampaignRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Rename a campaign. A taken name is swapped once for a prompt-derived one, else 409."""
    campaign = await campaign_service.rename_campaign(db, user, campaign_id, data.name)
    return ok({"campaign": CampaignResponse.model_validate(campaign)})


@router.delete("/{campaign_id}", response_model=Envelope)
async def delete_campaign(
    campaign_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete a campaign and everything under it. Succeeds when already deleted."""
    deleted = await campaign_service.delete_campaign(db, user, campaign_id)
    return ok({"deleted": deleted})


# ---------------------------------------------------------------------------
# Ads under a campaign
# ---------------------------------------------------------------------------

@router.get("/{campaign_id}/ads", response_model=Envelope)
async def list_campaign_ads(
    campaign_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await campaign_service.get_owned_campaign(db, campaign_id, user)
    result = await db.execute(
        select(Ad).where(Ad.campaign_id == campaign_id).order_by(Ad.created_at)
    )
    return ok({"ads": [AdResponse.model_validate(a) for a in result.scalars().all()]})


@router.post("/{campaign_id}/ads/draft", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_draft_ad(
    campaign_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ad = await campaign_service.create_draft_ad(db, user, campaign_id)
    return ok({"ad": AdResponse.model_validate(ad)})
