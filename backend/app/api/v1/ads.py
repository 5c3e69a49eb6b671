import uuid

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user, get_publish_orchestrator
from app.models.user import User
from app.schemas.common import Envelope, ok
from app.schemas.publish import (
    PublishPreviewResponse,
    PublishRequest,
    PublishResponse,
    PublishStatusResponse,
)
from app.services.publish_orchestrator import PublishOrchestrator

router = APIRouter()


@router.get("/{ad_id}/preflight", response_model=Envelope)
async def preflight(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    """Readiness report for an ad. Read-only; cached briefly per ad."""
    report = await orchestrator.preflight(user, ad_id)
    return ok(report)


@router.get("/{ad_id}/publish-preview", response_model=Envelope)
async def publish_preview(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    """The payload that would be sent to Meta, without sending it."""
    preview = await orchestrator.preview(user, ad_id)
    return ok(PublishPreviewResponse(**preview))


@router.post("/{ad_id}/publish", response_model=Envelope)
async def publish_ad(
    ad_id: uuid.UUID,
    data: PublishRequest | None = None,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    result = await orchestrator.publish(user, ad_id, campaign_id=data.campaign_id if data else None)
    return ok(PublishResponse(**result))


@router.get("/{ad_id}/publish", response_model=Envelope)
async def publish_status(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    status = await orchestrator.status(user, ad_id)
    return ok(PublishStatusResponse(**status))


@router.post("/{ad_id}/pause", response_model=Envelope)
async def pause_ad(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    return ok(await orchestrator.change_status(user, ad_id, "pause"))


@router.post("/{ad_id}/resume", response_model=Envelope)
async def resume_ad(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    return ok(await orchestrator.change_status(user, ad_id, "resume"))


@router.get("/{ad_id}/verify", response_model=Envelope)
async def verify_publish(
    ad_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: PublishOrchestrator = Depends(get_publish_orchestrator),
):
    """Re-read the published campaign, ad set and ad from Meta."""
    return ok(await orchestrator.verify(user, ad_id))
