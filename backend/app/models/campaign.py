"""Campaign models: the campaign itself, its platform connection, and the
per-campaign rows (builder state, chat history) that are removed with it."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


CAMPAIGN_GOALS = ("leads", "calls", "website-visits")


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    goal: Mapped[str | None] = mapped_column(String(30))  # leads, calls, website-visits
    daily_budget: Mapped[int | None] = mapped_column(Integer)  # minor currency units
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    status: Mapped[str] = mapped_column(String(30), default="draft")
    # "metadata" is reserved on declarative classes
    campaign_metadata: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    meta_campaign_id: Mapped[str | None] = mapped_column(String(50))
    meta_adset_id: Mapped[str | None] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    user = relationship("User", back_populates="campaigns")
    connection = relationship("MetaConnection", back_populates="campaign", uselist=False, passive_deletes=True)
    ads = relationship("Ad", back_populates="campaign", passive_deletes=True)


# Names are unique per owner regardless of case
Index("uq_campaigns_user_id_lower_name", Campaign.user_id, func.lower(Campaign.name), unique=True)


class MetaConnection(Base):
    """Per-campaign link to the ad platform. Refreshed outside the publish pipeline."""

    __tablename__ = "meta_connections"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    access_token_encrypted: Mapped[str | None] = mapped_column(Text)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    selected_business_id: Mapped[str | None] = mapped_column(String(50))
    selected_page_id: Mapped[str | None] = mapped_column(String(50))
    selected_ad_account_id: Mapped[str | None] = mapped_column(String(50))  # act_123456789
    selected_ig_user_id: Mapped[str | None] = mapped_column(String(50))
    ad_account_currency_code: Mapped[str | None] = mapped_column(String(10))
    ad_account_payment_connected: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    campaign = relationship("Campaign", back_populates="connection")


class CampaignState(Base):
    """Builder step state (goal, audience, budget drafts) kept while editing."""

    __tablename__ = "campaign_states"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    goal_data: Mapped[dict | None] = mapped_column(JSONB)
    audience_data: Mapped[dict | None] = mapped_column(JSONB)
    budget_data: Mapped[dict | None] = mapped_column(JSONB)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    messages: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
