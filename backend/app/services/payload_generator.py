"""Builds the Meta publish payload from normalized campaign and ad data.

The output mirrors Meta's object model, campaign -> ad set -> ads (each with a
creative), plus a ``preview`` block for the pre-publish screen. Generation is
pure: no clock, no I/O, so identical input gives identical output.
"""

import logging
import re

from app.schemas.publish import AdCopy, ConnectionSelections, DestinationConfig, TargetLocation
from app.services.publishing_config import (
    DEFAULT_CTA,
    GOAL_TO_OBJECTIVE,
    LEAD_FORM_CTA,
    TARGETING_DEFAULTS,
    format_money,
)

logger = logging.getLogger(__name__)

DESTINATION_TYPES = ("website", "form", "call")

_ADSET_DESTINATION = {
    "website": "WEBSITE",
    "form": "ON_AD",
    "call": "PHONE_CALL",
}

_SUMMARY_NOUNS = (
    ("countries", "country", "countries"),
    ("regions", "region", "regions"),
    ("cities", "city", "cities"),
    ("custom_locations", "radius area", "radius areas"),
)


class PayloadGenerationError(ValueError):
    """Raised when the input cannot produce a submittable payload."""


def resolve_destination(
    goal: str | None,
    destination: DestinationConfig | None,
    declared_type: str | None = None,
) -> tuple[str, DestinationConfig]:
    """Pick the destination type for a goal from whatever the user configured.

    Lead campaigns use the instant form when one is set and fall back to the
    website otherwise. A declared type wins when it is compatible with the goal.
    """
    config = destination or DestinationConfig()
    if goal == "calls":
        return "call", config
    if goal == "leads":
        if declared_type in ("form", "website"):
            return declared_type, config
        return ("form" if config.lead_form_id else "website"), config
    return "website", config


def normalize_phone(phone: str) -> str:
    phone = phone.strip()
    if phone.startswith("tel:"):
        phone = phone[4:]
    return re.sub(r"[^\d+]", "", phone)


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "campaign"


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def summarize_targeting(geo_locations: dict | None) -> str:
    """One-line description such as ``"1 country, 3 regions"``."""
    if not geo_locations:
        return "No targeting"
    parts = []
    for bucket, singular, plural in _SUMMARY_NOUNS:
        count = len(geo_locations.get(bucket) or [])
        if count:
            parts.append(_plural(count, singular, plural))
    return ", ".join(parts) or "No targeting"


def build_geo_block(locations: list[TargetLocation]) -> dict:
    """Partition locations into Meta's geo buckets. Empty buckets are omitted."""
    countries: list[str] = []
    regions: list[dict] = []
    cities: list[dict] = []
    custom: list[dict] = []

    for loc in locations:
        if loc.type == "radius":
            if loc.latitude is None or loc.longitude is None:
                raise PayloadGenerationError(f'Location "{loc.name}" has no coordinates')
            custom.append({
                "latitude": loc.latitude,
                "longitude": loc.longitude,
                "radius": loc.radius if loc.radius else 10,
                "distance_unit": "mile",
            })
        elif loc.type == "country":
            code = (loc.country_code or loc.key or "").upper()
            if not code:
                raise PayloadGenerationError(f'Location "{loc.name}" has no country code')
            if code not in countries:
                countries.append(code)
        elif loc.type in ("region", "city"):
            if not loc.key:
                raise PayloadGenerationError(f'Location "{loc.name}" has no targeting key')
            bucket = regions if loc.type == "region" else cities
            entry = {"key": loc.key}
            if entry not in bucket:
                bucket.append(entry)
        else:
            raise PayloadGenerationError(f'Location "{loc.name}" has unknown type "{loc.type}"')

    geo: dict = {}
    if countries:
        geo["countries"] = countries
    if regions:
        geo["regions"] = regions
    if cities:
        geo["cities"] = cities
    if custom:
        geo["custom_locations"] = custom
    return geo


class PayloadGenerator:
    def __init__(self, default_country_code: str = "US", placeholder_url: str = "https://example.com"):
        self.default_country_code = default_country_code
        self.placeholder_url = placeholder_url

    def generate(
        self,
        campaign_name: str,
        selections: ConnectionSelections,
        destination_type: str,
        destination: DestinationConfig,
        *,
        goal: str,
        daily_budget_cents: int | None,
        locations: list[TargetLocation],
        ad_copy: AdCopy,
        ad_name: str | None = None,
        image_url: str | None = None,
        audience: dict | None = None,
    ) -> tuple[dict, list[str]]:
        """Return ``(publish_data, warnings)``.

        Raises PayloadGenerationError for input that can never be submitted
        (unknown goal, missing budget, form without form id, call without phone).
        A website or lead form destination without a URL still succeeds, with a
        placeholder link and one warning.
        """
        if goal not in GOAL_TO_OBJECTIVE:
            raise PayloadGenerationError(f"Unsupported campaign goal: {goal!r}")
        if destination_type not in DESTINATION_TYPES:
            raise PayloadGenerationError(f"Unsupported destination type: {destination_type!r}")
        if daily_budget_cents is None or daily_budget_cents <= 0:
            raise PayloadGenerationError("Daily budget is not set")

        warnings: list[str] = []
        mapping = GOAL_TO_OBJECTIVE[goal]

        included_geo = build_geo_block([loc for loc in locations if not loc.excluded])
        excluded_geo = build_geo_block([loc for loc in locations if loc.excluded])
        targeting = self._build_targeting(included_geo, excluded_geo, audience)
        link_data, ad_destination = self._build_destination(
            goal, destination_type, destination, ad_copy, warnings,
        )
        if image_url:
            link_data["picture"] = image_url

        object_story_spec: dict = {"page_id": selections.page_id, "link_data": link_data}
        if selections.instagram_actor_id:
            object_story_spec["instagram_actor_id"] = selections.instagram_actor_id

        adset: dict = {
            "name": f"{campaign_name} - Ad Set",
            "daily_budget": daily_budget_cents,
            "billing_event": mapping["billing_event"],
            "optimization_goal": mapping["optimization_goal"],
            "bid_strategy": mapping["bid_strategy"],
            "destination_type": _ADSET_DESTINATION[destination_type],
            "targeting": targeting,
            "status": "PAUSED",
        }
        if destination_type == "form" and selections.page_id:
            adset["promoted_object"] = {"page_id": selections.page_id}

        ad_label = ad_name or f"{campaign_name} - Ad 1"
        ads = [{
            "name": ad_label,
            "status": "PAUSED",
            "creative": {
                "name": f"{ad_label} - Creative",
                "object_story_spec": object_story_spec,
            },
            "destination": ad_destination,
            "tracking": {
                "url_tags": f"utm_source=facebook&utm_medium=paid_social&utm_campaign={_slug(campaign_name)}",
            },
        }]

        publish_data = {
            "campaign": {
                "name": campaign_name,
                "objective": mapping["objective"],
                "status": "PAUSED",
                "special_ad_categories": [],
            },
            "adset": adset,
            "ads": ads,
            "preview": {
                "campaign_name": campaign_name,
                "objective": mapping["objective"],
                "ad_count": len(ads),
                "daily_budget_display": format_money(daily_budget_cents, selections.currency),
                "targeting_summary": summarize_targeting(included_geo),
                "destination_type": destination_type,
            },
        }
        if warnings:
            logger.info("Payload for %r generated with %d warning(s)", campaign_name, len(warnings))
        return publish_data, warnings

    def _build_targeting(self, included_geo: dict, excluded_geo: dict, audience: dict | None) -> dict:
        geo = dict(included_geo)
        if not geo:
            # Meta rejects an ad set with no geo; fall back to the home market
            geo = {"countries": [self.default_country_code]}
        geo["location_types"] = list(TARGETING_DEFAULTS["location_types"])

        audience = audience or {}
        targeting: dict = {
            "geo_locations": geo,
            "age_min": audience.get("age_min") or TARGETING_DEFAULTS["age_min"],
            "age_max": audience.get("age_max") or TARGETING_DEFAULTS["age_max"],
            "publisher_platforms": list(TARGETING_DEFAULTS["publisher_platforms"]),
        }
        if audience.get("genders"):
            targeting["genders"] = list(audience["genders"])

        if excluded_geo:
            targeting["excluded_geo_locations"] = excluded_geo
        return targeting

    def _build_destination(
        self,
        goal: str,
        destination_type: str,
        destination: DestinationConfig,
        ad_copy: AdCopy,
        warnings: list[str],
    ) -> tuple[dict, dict]:
        link_data: dict = {
            "message": ad_copy.primary_text or "",
            "name": ad_copy.headline or "",
        }
        if ad_copy.description:
            link_data["description"] = ad_copy.description

        if destination_type == "form":
            if not destination.lead_form_id:
                raise PayloadGenerationError("Lead form destination requires a lead form id")
            # Meta requires link_data.link even when the CTA opens a lead form
            link_data["link"] = destination.website_url or self._placeholder(warnings)
            link_data["call_to_action"] = {
                "type": ad_copy.cta_type or LEAD_FORM_CTA,
                "value": {"lead_gen_form_id": destination.lead_form_id},
            }
            ad_destination = {"type": "form", "lead_form_id": destination.lead_form_id}
            if destination.website_url:
                ad_destination["fallback_url"] = destination.website_url
            return link_data, ad_destination

        if destination_type == "call":
            if not destination.phone_number:
                raise PayloadGenerationError("Call destination requires a phone number")
            phone = normalize_phone(destination.phone_number)
            link_data["link"] = f"tel:{phone}"
            link_data["call_to_action"] = {
                "type": ad_copy.cta_type or DEFAULT_CTA["calls"],
                "value": {"link": f"tel:{phone}"},
            }
            return link_data, {"type": "call", "phone_number": phone}

        url = destination.website_url or self._placeholder(warnings)
        link_data["link"] = url
        link_data["call_to_action"] = {
            "type": ad_copy.cta_type or DEFAULT_CTA.get(goal, "LEARN_MORE"),
            "value": {"link": url},
        }
        return link_data, {"type": "website", "website_url": url}

    def _placeholder(self, warnings: list[str]) -> str:
        warnings.append(
            f"No website URL was provided, so the placeholder {self.placeholder_url} will be used. "
            "Update the destination before publishing."
        )
        return self.placeholder_url
