from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime

from app.models.campaign import CAMPAIGN_GOALS


class CreateCampaignRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    goal: str | None = None
    daily_budget: int | None = Field(default=None, ge=0)  # in cents
    currency: str = Field(default="USD", min_length=3, max_length=3)
    initial_prompt: str | None = Field(default=None, max_length=5000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("goal")
    @classmethod
    def known_goal(cls, v: str | None) -> str | None:
        if v is not None and v not in CAMPAIGN_GOALS:
            raise ValueError(f"goal must be one of {', '.join(CAMPAIGN_GOALS)}")
        return v


class RenameCampaignRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    goal: str | None
    daily_budget: int | None
    currency: str
    status: str
    meta_campaign_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AdResponse(BaseModel):
    id: UUID
    campaign_id: UUID
    name: str
    status: str
    meta_ad_id: str | None
    published_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
