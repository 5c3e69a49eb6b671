"""initial publish pipeline schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates users, campaigns (+ connection, builder state, conversations) and ads
with their child records and the append-only publish audit table.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _ad_fk() -> sa.Column:
    return sa.Column(
        "ad_id", postgresql.UUID(as_uuid=True),
        sa.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, index=True,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("full_name", sa.String(255)),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        _created_at(),
        _updated_at(),
    )

    # ---- Campaigns ----

    op.create_table(
        "campaigns",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("goal", sa.String(30)),
        sa.Column("daily_budget", sa.Integer),
        sa.Column("currency", sa.String(10), server_default="USD"),
        sa.Column("status", sa.String(30), server_default="draft"),
        sa.Column("metadata", postgresql.JSONB, server_default="{}"),
        sa.Column("meta_campaign_id", sa.String(50)),
        sa.Column("meta_adset_id", sa.String(50)),
        _created_at(),
        _updated_at(),
    )
    op.create_index(
        "uq_campaigns_user_id_lower_name",
        "campaigns",
        ["user_id", sa.text("lower(name)")],
        unique=True,
    )

    op.create_table(
        "meta_connections",
        _id(),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("access_token_encrypted", sa.Text),
        sa.Column("token_expires_at", sa.DateTime(timezone=True)),
        sa.Column("selected_business_id", sa.String(50)),
        sa.Column("selected_page_id", sa.String(50)),
        sa.Column("selected_ad_account_id", sa.String(50)),
        sa.Column("selected_ig_user_id", sa.String(50)),
        sa.Column("ad_account_currency_code", sa.String(10)),
        sa.Column("ad_account_payment_connected", sa.Boolean, server_default="false"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "campaign_states",
        _id(),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("goal_data", postgresql.JSONB),
        sa.Column("audience_data", postgresql.JSONB),
        sa.Column("budget_data", postgresql.JSONB),
        _updated_at(),
    )

    op.create_table(
        "conversations",
        _id(),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), index=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(255)),
        sa.Column("messages", postgresql.JSONB, server_default="[]"),
        _created_at(),
    )

    # ---- Ads ----

    op.create_table(
        "ads",
        _id(),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(30), server_default="draft"),
        sa.Column("meta_ad_id", sa.String(50), index=True),
        sa.Column("selected_creative_id", postgresql.UUID(as_uuid=True)),
        sa.Column("selected_copy_id", postgresql.UUID(as_uuid=True)),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("campaign_id", "name", name="uq_ads_campaign_id_name"),
    )

    op.create_table(
        "ad_creatives",
        _id(),
        _ad_fk(),
        sa.Column("image_url", sa.Text),
        sa.Column("format", sa.String(20), server_default="feed"),
        sa.Column("sort_order", sa.Integer, server_default="0"),
        _created_at(),
    )

    op.create_table(
        "ad_copy_variations",
        _id(),
        _ad_fk(),
        sa.Column("headline", sa.Text),
        sa.Column("primary_text", sa.Text),
        sa.Column("description", sa.Text),
        sa.Column("cta_type", sa.String(50)),
        sa.Column("sort_order", sa.Integer, server_default="0"),
        _created_at(),
    )

    op.create_table(
        "ad_destinations",
        _id(),
        sa.Column("ad_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("destination_type", sa.String(20), server_default="website"),
        sa.Column("website_url", sa.Text),
        sa.Column("lead_form_id", sa.String(50)),
        sa.Column("phone_number", sa.String(30)),
        _created_at(),
    )

    op.create_table(
        "ad_budgets",
        _id(),
        sa.Column("ad_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("ads.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("daily_budget", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(10)),
        _created_at(),
    )

    op.create_table(
        "ad_target_locations",
        _id(),
        _ad_fk(),
        sa.Column("location_name", sa.String(255), nullable=False),
        sa.Column("location_type", sa.String(20), nullable=False),
        sa.Column("location_key", sa.String(50)),
        sa.Column("country_code", sa.String(5)),
        sa.Column("latitude", sa.Float),
        sa.Column("longitude", sa.Float),
        sa.Column("radius", sa.Float),
        sa.Column("is_excluded", sa.Boolean, server_default="false"),
        _created_at(),
    )

    op.create_table(
        "ad_publish_records",
        _id(),
        _ad_fk(),
        sa.Column("meta_ad_id", sa.String(50), nullable=False),
        sa.Column("meta_campaign_id", sa.String(50)),
        sa.Column("meta_adset_id", sa.String(50)),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("source", sa.String(30), server_default="publish"),
        sa.Column("payload", postgresql.JSONB),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("ad_publish_records")
    op.drop_table("ad_target_locations")
    op.drop_table("ad_budgets")
    op.drop_table("ad_destinations")
    op.drop_table("ad_copy_variations")
    op.drop_table("ad_creatives")
    op.drop_table("ads")
    op.drop_table("conversations")
    op.drop_table("campaign_states")
    op.drop_table("meta_connections")
    op.drop_index("uq_campaigns_user_id_lower_name", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("users")
