"""Preflight validation: read-only readiness checks run before a publish.

Every check appends issues to a shared list instead of raising, so a single
call reports everything the user has to fix. ``can_publish`` is true exactly
when no CRITICAL issue was found; WARNING issues are informational.
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from app.schemas.publish import PreflightParams, PreflightReport, ValidationIssue
from app.services.publishing_config import (
    GOAL_TO_OBJECTIVE,
    TEXT_LIMITS,
    TOKEN_EXPIRY_WARNING_DAYS,
    budget_minimum,
    format_money,
)
from app.utils.errors import ErrorCode

logger = logging.getLogger(__name__)

CRITICAL = "CRITICAL"
WARNING = "WARNING"

# Codes outside the shared taxonomy, used only inside reports
NO_META_CONNECTION = "NO_META_CONNECTION"
TOKEN_EXPIRING_SOON = "TOKEN_EXPIRING_SOON"
TEXT_TOO_LONG = "TEXT_TOO_LONG"
INSECURE_URL = "INSECURE_URL"
NO_LOCATIONS = "NO_LOCATIONS"
PLACEHOLDER_DESTINATION = "PLACEHOLDER_DESTINATION"

_GOAL_DESTINATIONS = {
    "leads": ("form", "website"),
    "calls": ("call",),
    "website-visits": ("website",),
}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PreflightValidator:
    """Runs connection, funding, content, destination, budget and targeting checks."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run_all(self, params: PreflightParams) -> PreflightReport:
        now = self._clock()
        issues: list[ValidationIssue] = []

        def add(code, message, severity=CRITICAL, suggested_fix=None, field=None, recoverable=True):
            issues.append(ValidationIssue(
                code=code,
                message=message,
                severity=severity,
                suggested_fix=suggested_fix,
                field=field,
                recoverable=recoverable,
                timestamp=now,
            ))

        self._check_connection(params, now, add)
        self._check_funding(params, add)
        self._check_copy(params, add)
        self._check_destination(params, add)
        self._check_budget(params, add)
        self._check_locations(params, add)

        errors = [i for i in issues if i.severity == CRITICAL]
        warnings = [i for i in issues if i.severity != CRITICAL]
        if errors:
            logger.info(
                "Preflight blocked: %s",
                ", ".join(f"{e.code}({e.field or '-'})" for e in errors),
            )
        return PreflightReport(
            can_publish=not errors,
            errors=errors,
            warnings=warnings,
            checked_at=now,
        )

    # -- Connection ---------------------------------------------------------

    def _check_connection(self, params: PreflightParams, now: datetime, add) -> None:
        if not params.access_token:
            add(
                NO_META_CONNECTION,
                "Facebook account not connected",
                suggested_fix="Connect your Facebook account",
                field="connection",
                recoverable=False,
            )
        elif params.token_expires_at is not None:
            expires_at = _as_utc(params.token_expires_at)
            if expires_at <= now:
                add(
                    ErrorCode.TOKEN_EXPIRED.value,
                    "Your Facebook connection has expired",
                    suggested_fix="Reconnect your Facebook account",
                    field="connection",
                    recoverable=False,
                )
            elif expires_at - now <= timedelta(days=TOKEN_EXPIRY_WARNING_DAYS):
                days = max((expires_at - now).days, 0)
                add(
                    TOKEN_EXPIRING_SOON,
                    f"Your Facebook connection expires in {days} day{'s' if days != 1 else ''}",
                    severity=WARNING,
                    suggested_fix="Reconnect your Facebook account to refresh access",
                    field="connection",
                )

        if not params.page_id:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "No Facebook Page selected",
                suggested_fix="Select the Page your ads will run from",
                field="page_id",
            )
        if not params.ad_account_id:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "No ad account selected",
                suggested_fix="Select an ad account to publish with",
                field="ad_account_id",
            )

    def _check_funding(self, params: PreflightParams, add) -> None:
        if params.ad_account_id and not params.payment_connected:
            add(
                ErrorCode.PAYMENT_REQUIRED.value,
                "The selected ad account has no payment method",
                suggested_fix="Add a payment method in Meta Ads Manager",
                field="payment",
            )

    # -- Content ------------------------------------------------------------

    def _check_copy(self, params: PreflightParams, add) -> None:
        copy = params.ad_copy
        if not (copy.headline or "").strip() and not (copy.primary_text or "").strip():
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "Ad copy is missing",
                suggested_fix="Add a headline or primary text",
                field="copy",
            )
            return

        for field, limit in TEXT_LIMITS.items():
            value = getattr(copy, field) or ""
            if len(value) > limit:
                add(
                    TEXT_TOO_LONG,
                    f"{field.replace('_', ' ').capitalize()} is {len(value)} characters and may be truncated (limit {limit})",
                    severity=WARNING,
                    suggested_fix=f"Shorten it to {limit} characters or fewer",
                    field=field,
                )

    def _check_destination(self, params: PreflightParams, add) -> None:
        goal = params.goal
        if goal not in GOAL_TO_OBJECTIVE:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "Campaign goal is missing or unsupported",
                suggested_fix="Start a new campaign and choose a goal",
                field="goal",
                recoverable=False,
            )
            return

        dest = params.destination
        dest_type = params.destination_type or _GOAL_DESTINATIONS[goal][0]
        if dest_type not in _GOAL_DESTINATIONS[goal]:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                f"A {dest_type} destination cannot be used with a {goal} campaign",
                suggested_fix="Choose a destination that matches the campaign goal",
                field="destination",
                recoverable=False,
            )
            return

        if dest_type == "call" and not dest.phone_number:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "Call ads need a phone number",
                suggested_fix="Add the phone number people should call",
                field="phone_number",
            )
        elif dest_type == "form" and not dest.lead_form_id:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "Lead ads need an instant form",
                suggested_fix="Select or create an instant form",
                field="lead_form_id",
            )
        elif dest_type == "website" and not dest.website_url:
            if goal == "leads":
                add(
                    ErrorCode.VALIDATION_ERROR.value,
                    "Lead ads need an instant form or a website",
                    suggested_fix="Select an instant form or enter your website URL",
                    field="destination",
                )
            else:
                add(
                    PLACEHOLDER_DESTINATION,
                    "No website URL set, a placeholder URL will be used",
                    severity=WARNING,
                    suggested_fix="Enter the website people should visit",
                    field="website_url",
                )

        if dest.website_url and dest_type != "call":
            self._check_url(dest.website_url, add)

    def _check_url(self, url: str, add) -> None:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                "Destination URL is malformed",
                suggested_fix="Enter a full URL starting with https://",
                field="website_url",
            )
        elif parsed.scheme == "http":
            add(
                INSECURE_URL,
                "Destination URL uses insecure HTTP",
                severity=WARNING,
                suggested_fix="Use an https:// URL",
                field="website_url",
            )

    # -- Budget & targeting -------------------------------------------------

    def _check_budget(self, params: PreflightParams, add) -> None:
        minimum = budget_minimum(params.currency)
        if params.daily_budget_cents is None or params.daily_budget_cents < minimum:
            add(
                ErrorCode.VALIDATION_ERROR.value,
                f"Daily budget must be at least {format_money(minimum, params.currency)}",
                suggested_fix="Increase the daily budget",
                field="daily_budget",
            )

    def _check_locations(self, params: PreflightParams, add) -> None:
        included = [loc for loc in params.locations if not loc.excluded]
        if not included:
            add(
                NO_LOCATIONS,
                "No locations selected, Meta will use a broad default region",
                severity=WARNING,
                suggested_fix="Add the locations you want to reach",
                field="locations",
            )

        for loc in params.locations:
            if loc.type == "radius":
                usable = loc.latitude is not None and loc.longitude is not None
            elif loc.type == "country":
                usable = bool(loc.key or loc.country_code)
            elif loc.type in ("region", "city"):
                usable = bool(loc.key)
            else:
                usable = False
            if not usable:
                add(
                    ErrorCode.VALIDATION_ERROR.value,
                    f'Location "{loc.name}" is missing its Meta targeting key',
                    suggested_fix="Remove the location and search for it again",
                    field="locations",
                    recoverable=False,
                )
