"""Meta Marketing API client: token encryption and ad publishing."""

import asyncio
import json
import logging

import httpx
from cryptography.fernet import Fernet

from app.config import get_settings
from app.services.meta_errors import RATE_LIMIT_CODES, ClassifiedError, classify_meta_error
from app.utils.errors import ErrorCode

logger = logging.getLogger(__name__)

# Keys in the generated payload that describe our side, not Meta fields
_LOCAL_AD_KEYS = ("destination", "tracking", "creative")


class MetaAPIError(Exception):
    """A Graph API call failed. ``message`` is Meta's raw error text.

    When raised from ``publish_ad``, ``orphaned`` holds the ids of objects that
    were created before the failure and could not be rolled back
    (``campaign_id``, ``adset_id``, ``ad_ids``, ``creative_ids``).
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        subcode: int | None = None,
        status_code: int | None = None,
        raw: dict | None = None,
        classified: ClassifiedError | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.status_code = status_code
        self.raw = raw
        self.classified = classified or classify_meta_error(code, message)
        self.rolled_back: list[str] = []
        self.orphaned: dict = {}

    @property
    def error_code(self) -> ErrorCode:
        return self.classified.code

    @property
    def retryable(self) -> bool:
        if self.classified.category == "network":
            return True
        if self.status_code is not None and self.status_code >= 500:
            return True
        return self.code in RATE_LIMIT_CODES


def normalize_ad_account_id(raw_id: str) -> str:
    raw_id = raw_id.strip()
    return raw_id if raw_id.startswith("act_") else f"act_{raw_id}"


def _encode_form(payload: dict) -> dict:
    """Graph API form encoding: nested values as JSON, ``None`` dropped."""
    encoded = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value)
        else:
            encoded[key] = str(value)
    return encoded


def _new_created() -> dict:
    return {"campaign_id": None, "adset_id": None, "creative_ids": [], "ad_ids": []}


class MetaAPIService:
    """Wraps the Meta Graph API calls the publish pipeline needs."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        settings = get_settings()
        self.graph_base = settings.meta_graph_base
        self.timeout = settings.meta_request_timeout_seconds
        self.max_attempts = max(1, settings.meta_max_attempts)
        self.retry_base_delay = settings.meta_retry_base_delay_seconds
        self.retry_max_delay = settings.meta_retry_max_delay_seconds
        self._transport = transport
        self._fernet = Fernet(settings.token_encryption_key.encode()) if settings.token_encryption_key else None

    # -- Token encryption helpers ------------------------------------------

    def encrypt_token(self, token: str) -> str:
        if not self._fernet:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY not configured")
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt_token(self, encrypted: str) -> str:
        if not self._fernet:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY not configured")
        return self._fernet.decrypt(encrypted.encode()).decode()

    # -- HTTP ---------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _backoff(self, attempt: int) -> float:
        """Delay after failed attempt ``attempt`` (1-based): base, 2x base, 4x base... capped."""
        return min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)

    async def _request(
        self, client: httpx.AsyncClient, method: str, access_token: str, path: str, data: dict | None = None,
    ) -> dict:
        """Graph call with exponential backoff on 5xx, rate limit and network failures."""
        attempt = 1
        while True:
            try:
                return await self._send(client, method, access_token, path, data)
            except MetaAPIError as e:
                if not e.retryable or attempt >= self.max_attempts:
                    raise
                wait = self._backoff(attempt)
                logger.warning(
                    "Meta API %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    method, path, attempt, self.max_attempts, wait, e.message,
                )
                await asyncio.sleep(wait)
                attempt += 1

    async def _post(self, client: httpx.AsyncClient, access_token: str, path: str, data: dict) -> dict:
        return await self._request(client, "POST", access_token, path, data)

    async def _delete(self, client: httpx.AsyncClient, access_token: str, object_id: str) -> dict:
        return await self._request(client, "DELETE", access_token, object_id)

    async def _send(
        self, client: httpx.AsyncClient, method: str, access_token: str, path: str, data: dict | None,
    ) -> dict:
        try:
            resp = await client.request(
                method,
                f"{self.graph_base}/{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                data=_encode_form(data) if data is not None else None,
            )
        except httpx.TimeoutException as e:
            logger.warning("Meta API timeout on %s: %s", path, e)
            raise MetaAPIError(
                f"Request to Meta timed out after {self.timeout:g}s",
                classified=ClassifiedError(code=ErrorCode.NETWORK_ERROR, category="network"),
            ) from e
        except httpx.TransportError as e:
            logger.warning("Meta API transport error on %s: %s", path, e)
            raise MetaAPIError(
                str(e) or "Could not reach Meta",
                classified=ClassifiedError(code=ErrorCode.NETWORK_ERROR, category="network"),
            ) from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.is_error:
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                message = error.get("message") or f"Meta API error {resp.status_code}"
                code = error.get("code")
                subcode = error.get("error_subcode")
            else:
                message = resp.text or f"Meta API error {resp.status_code}"
                code = subcode = None
            logger.warning("Meta API %s on %s: code=%s %s", resp.status_code, path, code, message)
            raise MetaAPIError(message, code=code, subcode=subcode, status_code=resp.status_code, raw=body)

        if not isinstance(body, dict):
            raise MetaAPIError(
                "Meta API response did not contain a JSON body",
                status_code=resp.status_code,
                classified=ClassifiedError(code=ErrorCode.API_ERROR, category="server"),
            )
        return body

    async def _create(self, client, access_token: str, path: str, data: dict, label: str) -> dict:
        body = await self._post(client, access_token, path, data)
        if not body.get("id"):
            raise MetaAPIError(
                f"Meta {label} creation did not return an ID",
                raw=body,
                classified=ClassifiedError(code=ErrorCode.API_ERROR, category="server"),
            )
        return body

    # -- Publishing ---------------------------------------------------------

    async def publish_ad(
        self,
        access_token: str,
        ad_account_id: str,
        publish_data: dict,
        existing_campaign_id: str | None = None,
        existing_adset_id: str | None = None,
    ) -> dict:
        """Create campaign, ad set, creative and ad(s) on Meta, in that order.

        An existing campaign / ad set from an earlier publish is reused. Returns
        ``{ad_id, ad_ids, status, campaign_id, adset_id, creative_id}`` where
        ``status`` is Meta's reported status for the first ad, if any.

        If a step fails, everything this call created is deleted again before
        the ``MetaAPIError`` propagates. Reused objects are never deleted.
        """
        act_id = normalize_ad_account_id(ad_account_id)
        ads = publish_data.get("ads") or []
        if not ads:
            raise MetaAPIError(
                "Publish configuration must include at least one ad",
                classified=ClassifiedError(code=ErrorCode.VALIDATION_ERROR, category="validation"),
            )

        created = _new_created()
        async with self._client() as client:
            try:
                campaign_id = existing_campaign_id
                if not campaign_id:
                    campaign = await self._create(
                        client, access_token, f"{act_id}/campaigns",
                        {"status": "PAUSED", **publish_data["campaign"]}, "campaign",
                    )
                    campaign_id = created["campaign_id"] = campaign["id"]
                    logger.info("Created Meta campaign %s on %s", campaign_id, act_id)

                adset_id = existing_adset_id
                if not adset_id:
                    adset = await self._create(
                        client, access_token, f"{act_id}/adsets",
                        {"status": "PAUSED", **publish_data["adset"], "campaign_id": campaign_id}, "ad set",
                    )
                    adset_id = created["adset_id"] = adset["id"]
                    logger.info("Created Meta ad set %s in campaign %s", adset_id, campaign_id)

                status = None
                for index, ad in enumerate(ads):
                    creative = await self._create(
                        client, access_token, f"{act_id}/adcreatives",
                        {
                            "name": ad["creative"].get("name") or ad["name"],
                            "object_story_spec": ad["creative"]["object_story_spec"],
                            "url_tags": (ad.get("tracking") or {}).get("url_tags"),
                        },
                        "creative",
                    )
                    created["creative_ids"].append(creative["id"])
                    fields = {k: v for k, v in ad.items() if k not in _LOCAL_AD_KEYS}
                    ad_obj = await self._create(
                        client, access_token, f"{act_id}/ads",
                        {
                            "status": "PAUSED",
                            **fields,
                            "adset_id": adset_id,
                            "creative": {"creative_id": creative["id"]},
                        },
                        f"ad #{index}",
                    )
                    if index == 0:
                        status = ad_obj.get("status") or ad_obj.get("effective_status")
                    created["ad_ids"].append(ad_obj["id"])
            except MetaAPIError as e:
                e.rolled_back, e.orphaned = await self.rollback(client, access_token, created)
                raise

        ad_ids = created["ad_ids"]
        logger.info("Published %d ad(s) to Meta: %s", len(ad_ids), ", ".join(ad_ids))
        return {
            "ad_id": ad_ids[0],
            "ad_ids": ad_ids,
            "status": status,
            "campaign_id": campaign_id,
            "adset_id": adset_id,
            "creative_id": created["creative_ids"][0],
        }

    async def rollback(self, client: httpx.AsyncClient, access_token: str, created: dict) -> tuple[list[str], dict]:
        """Delete created objects: ads, ad set, campaign, then creatives.

        Returns ``(deleted_ids, orphaned)`` where ``orphaned`` has the same shape
        as ``created`` and lists what could not be deleted. A creative that
        cannot be deleted is logged but not reported, since unused creatives
        are never billed.
        """
        deleted: list[str] = []
        orphaned = _new_created()
        if not any(created.values()):
            return deleted, {}

        logger.warning("Rolling back partial Meta publish: %s", created)

        async def _try_delete(object_id: str) -> bool:
            try:
                await self._delete(client, access_token, object_id)
            except MetaAPIError as e:
                logger.warning("Rollback could not delete Meta object %s: %s", object_id, e.message)
                return False
            deleted.append(object_id)
            return True

        for ad_id in reversed(created["ad_ids"]):
            if not await _try_delete(ad_id):
                orphaned["ad_ids"].append(ad_id)
        for key in ("adset_id", "campaign_id"):
            if created[key] and not await _try_delete(created[key]):
                orphaned[key] = created[key]
        for creative_id in created["creative_ids"]:
            await _try_delete(creative_id)

        logger.info("Rollback deleted %d Meta object(s): %s", len(deleted), ", ".join(deleted))
        return deleted, {k: v for k, v in orphaned.items() if v}

    # -- Verification -------------------------------------------------------

    async def verify_publish(
        self, access_token: str, campaign_id: str | None, adset_id: str | None, ad_ids: list[str],
    ) -> dict:
        """Re-read published objects from Meta and report what is missing or unexpected.

        Objects are created PAUSED, so any other status is a warning. A lookup
        failure is an error for that object; the others are still checked.
        """
        errors: list[str] = []
        warnings: list[str] = []
        statuses: dict[str, str | None] = {}

        async with self._client() as client:
            for label, object_id in [("Campaign", campaign_id), ("Ad set", adset_id)] + [
                (f"Ad {i + 1}", ad_id) for i, ad_id in enumerate(ad_ids)
            ]:
                if not object_id:
                    errors.append(f"{label} has no Meta id recorded")
                    continue
                try:
                    body = await self._request(client, "GET", access_token, f"{object_id}?fields=id,name,status")
                except MetaAPIError as e:
                    errors.append(f"{label} {object_id} verification failed: {e.message}")
                    continue
                if not body.get("id"):
                    errors.append(f"{label} {object_id} not found")
                    continue
                statuses[object_id] = body.get("status")
                if body.get("status") and body["status"] != "PAUSED":
                    warnings.append(f"{label} status is {body['status']}, expected PAUSED")

        if errors:
            logger.warning("Post-publish verification found %d problem(s): %s", len(errors), "; ".join(errors))
        return {
            "success": not errors,
            "campaign_exists": bool(campaign_id) and campaign_id in statuses,
            "adset_exists": bool(adset_id) and adset_id in statuses,
            "all_ads_exist": bool(ad_ids) and all(ad_id in statuses for ad_id in ad_ids),
            "statuses": statuses,
            "warnings": warnings,
            "errors": errors,
        }

    # -- Status management --------------------------------------------------

    async def update_ad_status(self, access_token: str, ad_id: str, status: str) -> dict:
        """Update ad status (ACTIVE, PAUSED)."""
        async with self._client() as client:
            return await self._post(client, access_token, ad_id, {"status": status})
