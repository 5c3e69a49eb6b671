"""Publish pipeline: preflight -> payload -> Meta submission -> local bookkeeping.

Once Meta has accepted an ad, the publish is reported as successful even if
recording it locally fails. That failure is logged and handed to the
reconciliation task so the local row catches up with Meta.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ad import (
    Ad,
    AdBudget,
    AdCopyVariation,
    AdCreative,
    AdDestination,
    AdPublishRecord,
    AdTargetLocation,
)
from app.models.campaign import Campaign, CampaignState, MetaConnection
from app.models.user import User
from app.schemas.publish import (
    AdCopy,
    ConnectionSelections,
    DestinationConfig,
    PreflightParams,
    PreflightReport,
    TargetLocation,
)
from app.services.meta_client import MetaAPIError, MetaAPIService
from app.services.meta_errors import user_facing
from app.services.payload_generator import PayloadGenerationError, PayloadGenerator, resolve_destination
from app.services.preflight import PreflightValidator
from app.services.rate_limit import RateLimiter
from app.utils.cache import TTLCache
from app.utils.errors import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    PublishFailedError,
    RateLimitExceededError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

PUBLISH_RATE_WINDOW_SECONDS = 60

# Reports are per ad and invalidated after a publish
preflight_cache = TTLCache(settings.preflight_cache_ttl_seconds)

META_STATUS_MAP = {
    "ACTIVE": "active",
    "PAUSED": "paused",
    "PENDING_REVIEW": "pending_review",
    "IN_PROCESS": "pending_review",
    "PREAPPROVED": "pending_review",
    "DISAPPROVED": "rejected",
    "WITH_ISSUES": "failed",
    "ARCHIVED": "archived",
    "DELETED": "archived",
}

# Publish attempt states
VALIDATING = "validating"
GENERATING = "generating"
SUBMITTING = "submitting"
PERSISTING = "persisting"
DONE = "done"
FAILED = "failed"

_TRANSITIONS = {
    None: {VALIDATING},
    VALIDATING: {GENERATING, FAILED},
    GENERATING: {SUBMITTING, FAILED},
    SUBMITTING: {PERSISTING, FAILED},
    PERSISTING: {DONE},
}


def map_meta_status(raw: str | None) -> str:
    if not raw:
        return "pending_review"
    return META_STATUS_MAP.get(raw.upper(), "pending_review")


class ReconciliationQueue(Protocol):
    def enqueue(
        self,
        ad_id: uuid.UUID,
        meta_ad_id: str,
        status: str,
        meta_campaign_id: str | None = None,
        meta_adset_id: str | None = None,
    ) -> None: ...


class CeleryReconciliationQueue:
    """Hands reconciliation to the ``reconcile_ad_publish`` Celery task."""

    def enqueue(self, ad_id, meta_ad_id, status, meta_campaign_id=None, meta_adset_id=None) -> None:
        from app.tasks.publish_tasks import reconcile_ad_publish

        reconcile_ad_publish.delay(str(ad_id), meta_ad_id, status, meta_campaign_id, meta_adset_id)


class PublishContext:
    """Everything loaded from the database that one publish attempt needs."""

    def __init__(
        self,
        ad: Ad,
        campaign: Campaign,
        connection: MetaConnection | None,
        access_token: str | None,
        ad_copy: AdCopy,
        destination_type: str,
        destination: DestinationConfig,
        daily_budget_cents: int | None,
        currency: str | None,
        locations: list[TargetLocation],
        image_url: str | None,
        audience: dict | None,
    ):
        self.ad = ad
        self.campaign = campaign
        self.connection = connection
        self.access_token = access_token
        self.ad_copy = ad_copy
        self.destination_type = destination_type
        self.destination = destination
        self.daily_budget_cents = daily_budget_cents
        self.currency = currency
        self.locations = locations
        self.image_url = image_url
        self.audience = audience

    @property
    def selections(self) -> ConnectionSelections:
        conn = self.connection
        return ConnectionSelections(
            page_id=conn.selected_page_id if conn else None,
            ad_account_id=conn.selected_ad_account_id if conn else None,
            instagram_actor_id=conn.selected_ig_user_id if conn else None,
            currency=self.currency,
        )

    def preflight_params(self) -> PreflightParams:
        conn = self.connection
        return PreflightParams(
            access_token=self.access_token,
            token_expires_at=conn.token_expires_at if conn else None,
            page_id=conn.selected_page_id if conn else None,
            ad_account_id=conn.selected_ad_account_id if conn else None,
            instagram_actor_id=conn.selected_ig_user_id if conn else None,
            payment_connected=bool(conn and conn.ad_account_payment_connected),
            goal=self.campaign.goal,
            ad_copy=self.ad_copy,
            destination_type=self.destination_type,
            destination=self.destination,
            daily_budget_cents=self.daily_budget_cents,
            currency=self.currency,
            locations=self.locations,
        )


class PublishOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        meta: MetaAPIService,
        rate_limiter: RateLimiter,
        reconciliation: ReconciliationQueue,
        validator: PreflightValidator | None = None,
        generator: PayloadGenerator | None = None,
        cache: TTLCache | None = None,
    ):
        self.db = db
        self.meta = meta
        self.rate_limiter = rate_limiter
        self.reconciliation = reconciliation
        self.validator = validator or PreflightValidator()
        self.generator = generator or PayloadGenerator(
            default_country_code=settings.default_country_code,
            placeholder_url=settings.placeholder_destination_url,
        )
        self.cache = cache if cache is not None else preflight_cache
        self.state: str | None = None

    def _transition(self, state: str, ad_id) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid publish transition {self.state} -> {state}")
        logger.info("Publish %s: %s -> %s", ad_id, self.state or "start", state)
        self.state = state

    # -- Loading ------------------------------------------------------------

    async def _get_owned_ad(self, user: User, ad_id: uuid.UUID, campaign_id: uuid.UUID | None = None):
        result = await self.db.execute(
            select(Ad, Campaign).join(Campaign, Ad.campaign_id == Campaign.id).where(Ad.id == ad_id)
        )
        row = result.one_or_none()
        if not row or (campaign_id is not None and row.Ad.campaign_id != campaign_id):
            raise NotFoundError("Ad not found")
        if row.Campaign.user_id != user.id:
            raise ForbiddenError("You do not have access to this ad")
        return row.Ad, row.Campaign

    async def _first(self, stmt):
        result = await self.db.execute(stmt.limit(1))
        return result.scalars().first()

    async def load_context(self, ad: Ad, campaign: Campaign) -> PublishContext:
        db = self.db
        connection = await self._first(select(MetaConnection).where(MetaConnection.campaign_id == campaign.id))

        access_token = None
        if connection and connection.access_token_encrypted:
            try:
                access_token = self.meta.decrypt_token(connection.access_token_encrypted)
            except (InvalidToken, RuntimeError) as e:
                logger.warning("Could not decrypt Meta token for campaign %s: %s", campaign.id, e)

        if ad.selected_copy_id:
            copy_row = await db.get(AdCopyVariation, ad.selected_copy_id)
        else:
            copy_row = await self._first(
                select(AdCopyVariation).where(AdCopyVariation.ad_id == ad.id).order_by(AdCopyVariation.sort_order)
            )
        ad_copy = AdCopy(
            headline=copy_row.headline if copy_row else None,
            primary_text=copy_row.primary_text if copy_row else None,
            description=copy_row.description if copy_row else None,
            cta_type=copy_row.cta_type if copy_row else None,
        )

        if ad.selected_creative_id:
            creative = await db.get(AdCreative, ad.selected_creative_id)
        else:
            creative = await self._first(
                select(AdCreative).where(AdCreative.ad_id == ad.id).order_by(AdCreative.sort_order)
            )

        dest_row = await self._first(select(AdDestination).where(AdDestination.ad_id == ad.id))
        form_data = (campaign.campaign_metadata or {}).get("form_data") or {}
        if dest_row:
            declared_type = dest_row.destination_type
            destination = DestinationConfig(
                website_url=dest_row.website_url,
                lead_form_id=dest_row.lead_form_id,
                phone_number=dest_row.phone_number,
            )
        else:
            declared_type = None
            destination = DestinationConfig(
                website_url=form_data.get("website_url"),
                lead_form_id=form_data.get("id"),
                phone_number=form_data.get("phone_number"),
            )
        destination_type, destination = resolve_destination(campaign.goal, destination, declared_type)

        budget = await self._first(select(AdBudget).where(AdBudget.ad_id == ad.id))
        daily_budget = budget.daily_budget if budget else campaign.daily_budget
        currency = (
            (connection.ad_account_currency_code if connection else None)
            or (budget.currency if budget else None)
            or campaign.currency
        )

        loc_result = await db.execute(
            select(AdTargetLocation).where(AdTargetLocation.ad_id == ad.id).order_by(AdTargetLocation.created_at)
        )
        locations = [
            TargetLocation(
                name=loc.location_name,
                type=loc.location_type,
                key=loc.location_key,
                country_code=loc.country_code,
                latitude=loc.latitude,
                longitude=loc.longitude,
                radius=loc.radius,
                excluded=loc.is_excluded,
            )
            for loc in loc_result.scalars().all()
        ]

        state = await self._first(
            select(CampaignState).where(CampaignState.campaign_id == campaign.id).order_by(CampaignState.updated_at.desc())
        )

        return PublishContext(
            ad=ad,
            campaign=campaign,
            connection=connection,
            access_token=access_token,
            ad_copy=ad_copy,
            destination_type=destination_type,
            destination=destination,
            daily_budget_cents=daily_budget,
            currency=currency,
            locations=locations,
            image_url=creative.image_url if creative else None,
            audience=state.audience_data if state else None,
        )

    def _generate(self, ctx: PublishContext) -> tuple[dict, list[str]]:
        try:
            return self.generator.generate(
                ctx.campaign.name,
                ctx.selections,
                ctx.destination_type,
                ctx.destination,
                goal=ctx.campaign.goal,
                daily_budget_cents=ctx.daily_budget_cents,
                locations=ctx.locations,
                ad_copy=ctx.ad_copy,
                ad_name=ctx.ad.name,
                image_url=ctx.image_url,
                audience=ctx.audience,
            )
        except PayloadGenerationError as e:
            raise ValidationFailedError(str(e)) from e

    # -- Read-only operations -----------------------------------------------

    async def preflight(self, user: User, ad_id: uuid.UUID) -> PreflightReport:
        ad, campaign = await self._get_owned_ad(user, ad_id)
        cache_key = str(ad.id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        ctx = await self.load_context(ad, campaign)
        report = self.validator.run_all(ctx.preflight_params())
        self.cache.set(cache_key, report)
        return report

    async def preview(self, user: User, ad_id: uuid.UUID) -> dict:
        ad, campaign = await self._get_owned_ad(user, ad_id)
        ctx = await self.load_context(ad, campaign)
        publish_data, warnings = self._generate(ctx)
        return {"publish_data": publish_data, "preview": publish_data["preview"], "warnings": warnings}

    async def status(self, user: User, ad_id: uuid.UUID) -> dict:
        ad, _ = await self._get_owned_ad(user, ad_id)
        return {
            "ad_id": ad.id,
            "status": ad.status,
            "meta_ad_id": ad.meta_ad_id,
            "published_at": ad.published_at,
        }

    # -- Publish ------------------------------------------------------------

    async def publish(self, user: User, ad_id: uuid.UUID, campaign_id: uuid.UUID | None = None) -> dict:
        """Run one publish attempt and return ``{meta_ad_id, status, ...}``.

        Raises RateLimitExceededError before any work, ValidationFailedError
        with the preflight report when the ad is not ready, and
        PublishFailedError when Meta rejects the submission.
        """
        decision = await self.rate_limiter.hit(
            f"{user.id}:publish", settings.publish_rate_limit_per_minute, PUBLISH_RATE_WINDOW_SECONDS,
        )
        if not decision.allowed:
            logger.info("Publish rate limit hit for user %s", user.id)
            raise RateLimitExceededError(decision.retry_after)

        ad, campaign = await self._get_owned_ad(user, ad_id, campaign_id)
        if ad.meta_ad_id:
            raise ConflictError(
                "This ad has already been published",
                details={"meta_ad_id": ad.meta_ad_id, "status": ad.status},
                code=ErrorCode.ALREADY_PUBLISHED,
            )

        self._transition(VALIDATING, ad_id)
        ctx = await self.load_context(ad, campaign)
        report = self.validator.run_all(ctx.preflight_params())
        self.cache.set(str(ad_id), report)
        if not report.can_publish:
            self._transition(FAILED, ad_id)
            raise ValidationFailedError(
                "Ad is not ready to publish",
                details={"preflight": report.model_dump(mode="json")},
            )

        self._transition(GENERATING, ad_id)
        try:
            publish_data, warnings = self._generate(ctx)
        except ValidationFailedError:
            self._transition(FAILED, ad_id)
            raise
        campaign.campaign_metadata = {**(campaign.campaign_metadata or {}), "publish_data": publish_data}
        await self.db.commit()

        self._transition(SUBMITTING, ad_id)
        try:
            result = await self.meta.publish_ad(
                ctx.access_token,
                ctx.connection.selected_ad_account_id,
                publish_data,
                existing_campaign_id=campaign.meta_campaign_id,
                existing_adset_id=campaign.meta_adset_id,
            )
        except MetaAPIError as e:
            self._transition(FAILED, ad_id)
            # Objects the rollback could not delete are reused by the next attempt
            if e.orphaned.get("campaign_id"):
                campaign.meta_campaign_id = e.orphaned["campaign_id"]
            if e.orphaned.get("adset_id"):
                campaign.meta_adset_id = e.orphaned["adset_id"]
            if e.orphaned:
                logger.warning("Ad %s publish left Meta objects behind: %s", ad_id, e.orphaned)
            await self._mark_failed(ad)
            messages = user_facing(e.error_code)
            raise PublishFailedError(
                messages["user_message"],
                details={
                    "platform_message": e.message,
                    "platform_code": e.code,
                    "category": e.error_code.value,
                    "user_message": messages["user_message"],
                    "suggested_action": messages["suggested_action"],
                },
            ) from e

        self._transition(PERSISTING, ad_id)
        status = map_meta_status(result.get("status"))
        persisted = await self._record_publish(ad, campaign, result, status, publish_data)
        self.cache.delete(str(ad_id))
        self._transition(DONE, ad_id)

        return {
            "meta_ad_id": result["ad_id"],
            "status": status,
            "meta_campaign_id": result.get("campaign_id"),
            "meta_adset_id": result.get("adset_id"),
            "persisted": persisted,
            "warnings": warnings,
        }

    async def _mark_failed(self, ad: Ad) -> None:
        try:
            ad.status = "failed"
            await self.db.commit()
        except SQLAlchemyError:
            logger.exception("Could not mark ad %s as failed", ad.id)
            await self.db.rollback()

    async def _write_publish_result(
        self, ad: Ad, campaign: Campaign, result: dict, status: str, publish_data: dict,
    ) -> None:
        now = datetime.now(timezone.utc)
        ad.meta_ad_id = result["ad_id"]
        ad.status = status
        ad.published_at = now
        campaign.meta_campaign_id = result.get("campaign_id")
        campaign.meta_adset_id = result.get("adset_id")
        if campaign.status == "draft":
            campaign.status = "active"
        self.db.add(AdPublishRecord(
            ad_id=ad.id,
            meta_ad_id=result["ad_id"],
            meta_campaign_id=result.get("campaign_id"),
            meta_adset_id=result.get("adset_id"),
            status=status,
            source="publish",
            payload=publish_data,
        ))
        await self.db.commit()

    async def _record_publish(
        self, ad: Ad, campaign: Campaign, result: dict, status: str, publish_data: dict,
    ) -> bool:
        """Write Meta's ids back locally. False when the write failed and was queued."""
        ad_id = ad.id
        try:
            await self._write_publish_result(ad, campaign, result, status, publish_data)
            return True
        except SQLAlchemyError:
            logger.exception(
                "Ad %s published to Meta as %s but the local update failed; queueing reconciliation",
                ad_id, result["ad_id"],
            )
            await self.db.rollback()

        try:
            self.reconciliation.enqueue(
                ad_id, result["ad_id"], status, result.get("campaign_id"), result.get("adset_id"),
            )
        except Exception:
            logger.exception("Could not enqueue reconciliation for ad %s", ad_id)
        return False

    # -- Pause / resume -----------------------------------------------------

    async def change_status(self, user: User, ad_id: uuid.UUID, action: str) -> dict:
        """Pause or resume a published ad on Meta and locally."""
        ad, campaign = await self._get_owned_ad(user, ad_id)
        if not ad.meta_ad_id:
            raise ValidationFailedError("Ad has not been published yet")

        if action == "pause":
            allowed_from, target, meta_status = ("active", "learning", "pending_review"), "paused", "PAUSED"
        else:
            allowed_from, target, meta_status = ("paused",), "active", "ACTIVE"
        if ad.status == target:
            return {"ad_id": ad.id, "status": ad.status, "meta_ad_id": ad.meta_ad_id}
        if ad.status not in allowed_from:
            raise ValidationFailedError(f"Cannot {action} an ad that is {ad.status}")

        ctx = await self.load_context(ad, campaign)
        if not ctx.access_token:
            raise ValidationFailedError(
                "Facebook account not connected", code=ErrorCode.TOKEN_EXPIRED,
            )
        try:
            await self.meta.update_ad_status(ctx.access_token, ad.meta_ad_id, meta_status)
        except MetaAPIError as e:
            messages = user_facing(e.error_code)
            raise PublishFailedError(
                messages["user_message"],
                details={"platform_message": e.message, "platform_code": e.code},
                code=e.error_code,
            ) from e

        ad.status = target
        await self.db.commit()
        self.cache.delete(str(ad.id))
        logger.info("Ad %s %sd (meta %s)", ad.id, action, ad.meta_ad_id)
        return {"ad_id": ad.id, "status": ad.status, "meta_ad_id": ad.meta_ad_id}

    # -- Post-publish verification -----------------------------------------

    async def verify(self, user: User, ad_id: uuid.UUID) -> dict:
        """Check that the campaign, ad set and ad recorded for this ad still exist on Meta."""
        ad, campaign = await self._get_owned_ad(user, ad_id)
        if not ad.meta_ad_id:
            raise ValidationFailedError("Ad has not been published yet")

        ctx = await self.load_context(ad, campaign)
        if not ctx.access_token:
            raise ValidationFailedError(
                "Facebook account not connected", code=ErrorCode.TOKEN_EXPIRED,
            )
        try:
            result = await self.meta.verify_publish(
                ctx.access_token, campaign.meta_campaign_id, campaign.meta_adset_id, [ad.meta_ad_id],
            )
        except MetaAPIError as e:
            messages = user_facing(e.error_code)
            raise PublishFailedError(
                messages["user_message"],
                details={"platform_message": e.message, "platform_code": e.code},
                code=e.error_code,
            ) from e
        logger.info("Verified ad %s on Meta: success=%s", ad.id, result["success"])
        return {"ad_id": ad.id, "meta_ad_id": ad.meta_ad_id, **result}
