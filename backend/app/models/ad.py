"""Ad models: the ad, its child records, and the append-only publish audit trail."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.database import Base


AD_STATUSES = (
    "draft",
    "pending_review",
    "active",
    "paused",
    "rejected",
    "failed",
    "learning",
    "archived",
)


class Ad(Base):
    __tablename__ = "ads"
    __table_args__ = (
        UniqueConstraint("campaign_id", "name", name="uq_ads_campaign_id_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="draft")
    meta_ad_id: Mapped[str | None] = mapped_column(String(50), index=True)
    selected_creative_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    selected_copy_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    campaign = relationship("Campaign", back_populates="ads")
    creatives = relationship("AdCreative", back_populates="ad", passive_deletes=True)
    copy_variations = relationship("AdCopyVariation", back_populates="ad", passive_deletes=True)
    destination = relationship("AdDestination", back_populates="ad", uselist=False, passive_deletes=True)
    budget = relationship("AdBudget", back_populates="ad", uselist=False, passive_deletes=True)
    target_locations = relationship("AdTargetLocation", back_populates="ad", passive_deletes=True)
    publish_records = relationship("AdPublishRecord", back_populates="ad", passive_deletes=True)

    @validates("status")
    def _known_status(self, key, value):
        if value not in AD_STATUSES:
            raise ValueError(f"Unknown ad status: {value!r}")
        return value


class AdCreative(Base):
    __tablename__ = "ad_creatives"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_url: Mapped[str | None] = mapped_column(Text)
    format: Mapped[str] = mapped_column(String(20), default="feed")
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="creatives")


class AdCopyVariation(Base):
    __tablename__ = "ad_copy_variations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    headline: Mapped[str | None] = mapped_column(Text)
    primary_text: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    cta_type: Mapped[str | None] = mapped_column(String(50))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="copy_variations")


class AdDestination(Base):
    __tablename__ = "ad_destinations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    destination_type: Mapped[str] = mapped_column(String(20), default="website")  # website, form, call
    website_url: Mapped[str | None] = mapped_column(Text)
    lead_form_id: Mapped[str | None] = mapped_column(String(50))
    phone_number: Mapped[str | None] = mapped_column(String(30))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="destination")


class AdBudget(Base):
    __tablename__ = "ad_budgets"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    daily_budget: Mapped[int] = mapped_column(Integer, nullable=False)  # minor currency units
    currency: Mapped[str | None] = mapped_column(String(10))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="budget")


class AdTargetLocation(Base):
    __tablename__ = "ad_target_locations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_type: Mapped[str] = mapped_column(String(20), nullable=False)  # country, region, city, radius
    location_key: Mapped[str | None] = mapped_column(String(50))  # platform targeting key
    country_code: Mapped[str | None] = mapped_column(String(5))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    radius: Mapped[float | None] = mapped_column(Float)  # miles
    is_excluded: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="target_locations")


class AdPublishRecord(Base):
    """One row per successful platform submission. Never updated in place."""

    __tablename__ = "ad_publish_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    meta_ad_id: Mapped[str] = mapped_column(String(50), nullable=False)
    meta_campaign_id: Mapped[str | None] = mapped_column(String(50))
    meta_adset_id: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="publish")  # publish, reconcile
    payload: Mapped[dict | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    ad = relationship("Ad", back_populates="publish_records")
