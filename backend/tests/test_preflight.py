"""Tests for the preflight validator."""

from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.publish import AdCopy, DestinationConfig, PreflightParams, TargetLocation
from app.services.preflight import PreflightValidator

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _params(**overrides) -> PreflightParams:
    fields = dict(
        access_token="token",
        token_expires_at=NOW + timedelta(days=60),
        page_id="page_1",
        ad_account_id="act_1",
        payment_connected=True,
        goal="website-visits",
        ad_copy=AdCopy(headline="Spring deals", primary_text="Save 20% this week."),
        destination_type="website",
        destination=DestinationConfig(website_url="https://shop.example.com"),
        daily_budget_cents=1500,
        currency="USD",
        locations=[TargetLocation(name="United States", type="country", key="US", country_code="US")],
    )
    fields.update(overrides)
    return PreflightParams(**fields)


@pytest.fixture()
def validator() -> PreflightValidator:
    return PreflightValidator(clock=lambda: NOW)


def _codes(issues):
    return [issue.code for issue in issues]


def test_complete_ad_can_publish(validator):
    report = validator.run_all(_params())
    assert report.can_publish is True
    assert report.errors == []
    assert report.warnings == []
    assert report.checked_at == NOW


def test_missing_connection_is_not_recoverable(validator):
    report = validator.run_all(_params(access_token=None))
    assert report.can_publish is False
    issue = report.errors[0]
    assert issue.code == "NO_META_CONNECTION"
    assert issue.recoverable is False
    assert issue.field == "connection"


def test_expired_token_blocks(validator):
    report = validator.run_all(_params(token_expires_at=NOW - timedelta(minutes=1)))
    assert "token_expired" in _codes(report.errors)


def test_token_expiring_soon_is_a_warning(validator):
    report = validator.run_all(_params(token_expires_at=NOW + timedelta(days=3)))
    assert report.can_publish is True
    assert _codes(report.warnings) == ["TOKEN_EXPIRING_SOON"]
    assert "3 days" in report.warnings[0].message


def test_naive_expiry_is_treated_as_utc(validator):
    naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    report = validator.run_all(_params(token_expires_at=naive))
    assert "token_expired" in _codes(report.errors)


def test_missing_page_and_ad_account(validator):
    report = validator.run_all(_params(page_id=None, ad_account_id=None))
    fields = [issue.field for issue in report.errors]
    assert "page_id" in fields
    assert "ad_account_id" in fields
    # no account selected means no payment check either
    assert "payment_required" not in _codes(report.errors)


def test_unfunded_ad_account(validator):
    report = validator.run_all(_params(payment_connected=False))
    assert _codes(report.errors) == ["payment_required"]


def test_missing_copy(validator):
    report = validator.run_all(_params(ad_copy=AdCopy()))
    assert [i.field for i in report.errors] == ["copy"]


def test_long_headline_is_a_warning(validator):
    report = validator.run_all(_params(ad_copy=AdCopy(headline="x" * 41, primary_text="ok")))
    assert report.can_publish is True
    assert _codes(report.warnings) == ["TEXT_TOO_LONG"]
    assert report.warnings[0].field == "headline"


def test_budget_below_minimum_reports_formatted_floor(validator):
    report = validator.run_all(_params(daily_budget_cents=50))
    assert report.can_publish is False
    issue = report.errors[0]
    assert issue.field == "daily_budget"
    assert "$1.00" in issue.message


def test_yen_budget_floor_is_whole_yen(validator):
    report = validator.run_all(_params(currency="JPY", daily_budget_cents=50))
    assert "¥100" in report.errors[0].message
    assert validator.run_all(_params(currency="JPY", daily_budget_cents=100)).can_publish is True


def test_missing_budget(validator):
    report = validator.run_all(_params(daily_budget_cents=None))
    assert [i.field for i in report.errors] == ["daily_budget"]


def test_website_visits_without_url_only_warns(validator):
    report = validator.run_all(_params(destination=DestinationConfig()))
    assert report.can_publish is True
    assert _codes(report.warnings) == ["PLACEHOLDER_DESTINATION"]


def test_leads_without_form_or_url_blocks(validator):
    report = validator.run_all(_params(goal="leads", destination_type="website", destination=DestinationConfig()))
    assert report.can_publish is False
    assert [i.field for i in report.errors] == ["destination"]


def test_lead_form_without_id_blocks(validator):
    report = validator.run_all(_params(goal="leads", destination_type="form", destination=DestinationConfig()))
    assert [i.field for i in report.errors] == ["lead_form_id"]


def test_call_without_phone_blocks(validator):
    report = validator.run_all(_params(goal="calls", destination_type="call", destination=DestinationConfig()))
    assert [i.field for i in report.errors] == ["phone_number"]


def test_destination_must_match_goal(validator):
    report = validator.run_all(_params(goal="calls", destination_type="website"))
    assert report.errors[0].field == "destination"
    assert report.errors[0].recoverable is False


def test_missing_goal_is_not_recoverable(validator):
    report = validator.run_all(_params(goal=None))
    assert report.errors[0].field == "goal"
    assert report.errors[0].recoverable is False


def test_malformed_url_blocks(validator):
    report = validator.run_all(_params(destination=DestinationConfig(website_url="shop.example.com")))
    assert [i.field for i in report.errors] == ["website_url"]


def test_http_url_warns(validator):
    report = validator.run_all(_params(destination=DestinationConfig(website_url="http://shop.example.com")))
    assert report.can_publish is True
    assert _codes(report.warnings) == ["INSECURE_URL"]


def test_no_locations_warns(validator):
    report = validator.run_all(_params(locations=[]))
    assert report.can_publish is True
    assert _codes(report.warnings) == ["NO_LOCATIONS"]


def test_location_without_key_blocks(validator):
    locations = [TargetLocation(name="Springfield", type="city")]
    report = validator.run_all(_params(locations=locations))
    assert report.can_publish is False
    issue = report.errors[0]
    assert issue.field == "locations"
    assert "Springfield" in issue.message
    assert issue.recoverable is False


def test_radius_needs_coordinates(validator):
    ok = TargetLocation(name="Near the shop", type="radius", latitude=40.7, longitude=-74.0, radius=5)
    bad = TargetLocation(name="Somewhere", type="radius", radius=5)
    assert validator.run_all(_params(locations=[ok])).can_publish is True
    assert validator.run_all(_params(locations=[bad])).can_publish is False


def test_all_problems_reported_together(validator):
    report = validator.run_all(_params(
        access_token=None, page_id=None, ad_copy=AdCopy(), daily_budget_cents=10,
    ))
    fields = {issue.field for issue in report.errors}
    assert {"connection", "page_id", "copy", "daily_budget"} <= fields
    assert all(issue.timestamp == NOW for issue in report.errors)
