"""Background reconciliation for publishes whose local write-back failed."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.celery_app import celery_app
from app.database import async_session
from app.models.ad import Ad, AdPublishRecord
from app.models.campaign import Campaign

logger = logging.getLogger(__name__)


async def apply_reconciliation(
    db: AsyncSession,
    ad_id: str,
    meta_ad_id: str,
    status: str,
    meta_campaign_id: str | None = None,
    meta_adset_id: str | None = None,
) -> dict:
    """Bring the local ad in line with what Meta accepted. Safe to run twice."""
    ad = await db.get(Ad, uuid.UUID(ad_id))
    if not ad:
        logger.warning("Reconcile: ad %s no longer exists (meta ad %s)", ad_id, meta_ad_id)
        return {"status": "missing"}
    if ad.meta_ad_id == meta_ad_id:
        return {"status": "already_reconciled"}
    if ad.meta_ad_id:
        logger.error(
            "Reconcile: ad %s already linked to meta ad %s, not overwriting with %s",
            ad_id, ad.meta_ad_id, meta_ad_id,
        )
        return {"status": "conflict"}

    ad.meta_ad_id = meta_ad_id
    ad.status = status
    ad.published_at = datetime.now(timezone.utc)

    campaign = await db.get(Campaign, ad.campaign_id)
    if campaign:
        campaign.meta_campaign_id = meta_campaign_id or campaign.meta_campaign_id
        campaign.meta_adset_id = meta_adset_id or campaign.meta_adset_id

    db.add(AdPublishRecord(
        ad_id=ad.id,
        meta_ad_id=meta_ad_id,
        meta_campaign_id=meta_campaign_id,
        meta_adset_id=meta_adset_id,
        status=status,
        source="reconcile",
    ))
    await db.commit()
    logger.info("Reconciled ad %s with meta ad %s (%s)", ad_id, meta_ad_id, status)
    return {"status": "reconciled"}


async def _run_reconcile(ad_id, meta_ad_id, status, meta_campaign_id, meta_adset_id) -> dict:
    async with async_session() as db:
        return await apply_reconciliation(db, ad_id, meta_ad_id, status, meta_campaign_id, meta_adset_id)


@celery_app.task(
    name="app.tasks.publish_tasks.reconcile_ad_publish",
    bind=True,
    max_retries=5,
    default_retry_delay=30,
)
def reconcile_ad_publish(
    self,
    ad_id: str,
    meta_ad_id: str,
    status: str,
    meta_campaign_id: str | None = None,
    meta_adset_id: str | None = None,
):
    """Celery task: re-apply a successful Meta publish to the local ad row."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(
            _run_reconcile(ad_id, meta_ad_id, status, meta_campaign_id, meta_adset_id)
        )
    except SQLAlchemyError as e:
        logger.warning("Reconcile of ad %s failed, retrying: %s", ad_id, e)
        raise self.retry(exc=e)
    finally:
        loop.close()
