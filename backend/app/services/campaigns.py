"""Campaign and ad lifecycle: create, rename, draft ads, idempotent delete.

The database's unique indexes are the final arbiter for names. Every insert or
rename that may collide runs inside a SAVEPOINT so a uniqueness violation can be
retried without losing the rest of the request's transaction.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import is_unique_violation
from app.models.ad import Ad
from app.models.campaign import Campaign, CampaignState, Conversation
from app.models.user import User
from app.services import naming
from app.utils.errors import ApiError, ConflictError, ErrorCode, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)
settings = get_settings()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_owned_campaign(db: AsyncSession, campaign_id: uuid.UUID, user: User) -> Campaign:
    result = await db.execute(select(Campaign).where(Campaign.id == campaign_id))
    campaign = result.scalar_one_or_none()
    if not campaign:
        raise NotFoundError("Campaign not found")
    if campaign.user_id != user.id:
        raise ForbiddenError("You do not have access to this campaign")
    return campaign


async def owner_campaign_names(db: AsyncSession, user_id: uuid.UUID) -> set[str]:
    """Lower-cased names of every campaign the user owns."""
    result = await db.execute(select(func.lower(Campaign.name)).where(Campaign.user_id == user_id))
    return set(result.scalars().all())


def initial_prompt_of(campaign: Campaign) -> str | None:
    metadata = campaign.campaign_metadata or {}
    return metadata.get("initial_prompt") or metadata.get("initialPrompt")


# ---------------------------------------------------------------------------
# Create / rename
# ---------------------------------------------------------------------------

async def _insert_campaign(db: AsyncSession, **fields) -> Campaign:
    async with db.begin_nested():
        campaign = Campaign(**fields)
        db.add(campaign)
        await db.flush()
    return campaign


async def create_campaign(
    db: AsyncSession,
    user: User,
    name: str,
    goal: str | None = None,
    daily_budget: int | None = None,
    currency: str = "USD",
    initial_prompt: str | None = None,
) -> Campaign:
    """Create a campaign. A taken name is replaced once by a prompt-derived alternative."""
    metadata = {"initial_prompt": initial_prompt} if initial_prompt else {}
    fields = dict(
        user_id=user.id, name=name, goal=goal, daily_budget=daily_budget,
        currency=currency.upper(), campaign_metadata=metadata,
    )
    try:
        campaign = await _insert_campaign(db, **fields)
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        taken = await owner_campaign_names(db, user.id)
        taken.add(name.lower())
        alternative = naming.resolve(name, taken, initial_prompt)
        if alternative is None:
            raise ConflictError(f'A campaign named "{name}" already exists', details={"name": name})
        logger.info("Campaign name %r taken for user %s, using %r", name, user.id, alternative)
        try:
            campaign = await _insert_campaign(db, **{**fields, "name": alternative})
        except IntegrityError as e2:
            if not is_unique_violation(e2):
                raise
            raise ConflictError(
                f'A campaign named "{alternative}" already exists', details={"name": alternative},
            ) from e2

    await db.commit()
    logger.info("Campaign %s created for user %s", campaign.id, user.id)
    return campaign


async def _apply_name(db: AsyncSession, campaign: Campaign, name: str) -> None:
    async with db.begin_nested():
        campaign.name = name
        await db.flush()


async def rename_campaign(db: AsyncSession, user: User, campaign_id: uuid.UUID, new_name: str) -> Campaign:
    """Rename, falling back once to a resolver-derived name on conflict.

    The alternative is seeded from the campaign's originating prompt; without
    one, or if the alternative also collides, a ConflictError is raised.
    """
    campaign = await get_owned_campaign(db, campaign_id, user)
    if campaign.name == new_name:
        return campaign

    try:
        await _apply_name(db, campaign, new_name)
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        # The rolled-back savepoint expired the campaign
        await db.refresh(campaign)
        taken = await owner_campaign_names(db, user.id)
        taken.add(new_name.lower())
        alternative = naming.resolve(new_name, taken, initial_prompt_of(campaign))
        if alternative is None:
            raise ConflictError(
                f'A campaign named "{new_name}" already exists', details={"name": new_name},
            )
        logger.info("Rename of %s to %r conflicted, retrying with %r", campaign.id, new_name, alternative)
        try:
            await _apply_name(db, campaign, alternative)
        except IntegrityError as e2:
            if not is_unique_violation(e2):
                raise
            raise ConflictError(
                f'A campaign named "{alternative}" already exists', details={"name": alternative},
            ) from e2

    await db.commit()
    return campaign


# ---------------------------------------------------------------------------
# Draft ads
# ---------------------------------------------------------------------------

def format_draft_timestamp(moment: datetime) -> str:
    """``Jan 1, 2025, 3:00 PM`` (no zero padding on day or hour)."""
    hour = moment.hour % 12 or 12
    return f"{moment:%b} {moment.day}, {moment.year}, {hour}:{moment:%M} {moment:%p}"


def draft_name_candidates(base: str, max_attempts: int):
    yield base
    for n in range(1, max_attempts):
        yield f"{base} ({n})"


async def create_draft_ad(
    db: AsyncSession,
    user: User,
    campaign_id: uuid.UUID,
    now: datetime | None = None,
) -> Ad:
    """Insert a draft ad named after the campaign and the current time.

    Name collisions get an incrementing ``(n)`` suffix, up to
    ``draft_name_max_attempts`` inserts in total.
    """
    campaign = await get_owned_campaign(db, campaign_id, user)
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    base = f"{campaign.name} - Draft {format_draft_timestamp(moment)}"
    max_attempts = settings.draft_name_max_attempts

    for attempt, name in enumerate(draft_name_candidates(base, max_attempts), start=1):
        try:
            async with db.begin_nested():
                ad = Ad(campaign_id=campaign.id, name=name, status="draft")
                db.add(ad)
                await db.flush()
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            logger.info("Draft name %r taken (attempt %d/%d)", name, attempt, max_attempts)
            continue
        await db.commit()
        logger.info("Draft ad %s created in campaign %s", ad.id, campaign.id)
        return ad

    raise ConflictError(
        "Could not generate a unique draft name. Please try again.",
        details={"retryable": True, "attempts": max_attempts},
    )


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

# Child tables cleared before the campaign row; failures here are logged only
_CAMPAIGN_CHILDREN = (
    ("campaign_states", CampaignState),
    ("ads", Ad),
    ("conversations", Conversation),
)


async def delete_campaign(db: AsyncSession, user: User, campaign_id: uuid.UUID) -> bool:
    """Delete a campaign and its dependents. Returns False when it was already gone.

    Deleting an absent campaign is a success: the desired end state holds.
    """
    result = await db.execute(select(Campaign.user_id).where(Campaign.id == campaign_id))
    owner_id = result.scalar_one_or_none()
    if owner_id is None:
        logger.info("Campaign %s already deleted", campaign_id)
        return False
    if owner_id != user.id:
        raise ForbiddenError("You do not have access to this campaign")

    for label, model in _CAMPAIGN_CHILDREN:
        try:
            async with db.begin_nested():
                await db.execute(delete(model).where(model.campaign_id == campaign_id))
        except SQLAlchemyError:
            logger.warning("Failed to delete %s for campaign %s", label, campaign_id, exc_info=True)

    try:
        async with db.begin_nested():
            await db.execute(delete(Campaign).where(Campaign.id == campaign_id))
        await db.commit()
    except SQLAlchemyError as e:
        logger.exception("Failed to delete campaign %s", campaign_id)
        await db.rollback()
        raise ApiError("Failed to delete campaign", code=ErrorCode.INTERNAL_ERROR) from e

    logger.info("Campaign %s deleted by user %s", campaign_id, user.id)
    return True
