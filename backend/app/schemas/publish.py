from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


# ---------------------------------------------------------------------------
# Normalized publish inputs
# ---------------------------------------------------------------------------

class TargetLocation(BaseModel):
    name: str
    type: str  # country, region, city, radius
    key: str | None = None
    country_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius: float | None = None  # miles
    excluded: bool = False


class AdCopy(BaseModel):
    headline: str | None = None
    primary_text: str | None = None
    description: str | None = None
    cta_type: str | None = None


class ConnectionSelections(BaseModel):
    page_id: str | None = None
    ad_account_id: str | None = None
    instagram_actor_id: str | None = None
    currency: str | None = None


class DestinationConfig(BaseModel):
    website_url: str | None = None
    lead_form_id: str | None = None
    phone_number: str | None = None


class PreflightParams(BaseModel):
    access_token: str | None = None
    token_expires_at: datetime | None = None
    page_id: str | None = None
    ad_account_id: str | None = None
    instagram_actor_id: str | None = None
    payment_connected: bool = False
    goal: str | None = None
    ad_copy: AdCopy = Field(default_factory=AdCopy)
    destination_type: str | None = None
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    daily_budget_cents: int | None = None
    currency: str | None = None
    locations: list[TargetLocation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Preflight report
# ---------------------------------------------------------------------------

class ValidationIssue(BaseModel):
    code: str
    message: str
    severity: str  # CRITICAL, WARNING
    suggested_fix: str | None = None
    field: str | None = None
    recoverable: bool = True
    timestamp: datetime


class PreflightReport(BaseModel):
    can_publish: bool
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]
    checked_at: datetime


# ---------------------------------------------------------------------------
# HTTP bodies
# ---------------------------------------------------------------------------

class PublishRequest(BaseModel):
    campaign_id: UUID | None = Field(default=None, validation_alias=AliasChoices("campaign_id", "campaignId"))


class PublishResponse(BaseModel):
    meta_ad_id: str
    status: str
    meta_campaign_id: str | None = None
    meta_adset_id: str | None = None
    persisted: bool = True
    warnings: list[str] = Field(default_factory=list)


class PublishStatusResponse(BaseModel):
    ad_id: UUID
    status: str
    meta_ad_id: str | None
    published_at: datetime | None


class PublishPreviewResponse(BaseModel):
    publish_data: dict
    preview: dict
    warnings: list[str]
