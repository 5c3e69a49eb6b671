"""Tests for the Meta Graph API client and error classification."""

import json
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.fernet import Fernet

from app.services.meta_client import MetaAPIError, MetaAPIService, normalize_ad_account_id
from app.services.meta_errors import classify_meta_error, user_facing
from app.utils.errors import ErrorCode

PUBLISH_DATA = {
    "campaign": {"name": "Spring Sale", "objective": "OUTCOME_TRAFFIC", "status": "PAUSED", "special_ad_categories": []},
    "adset": {"name": "Spring Sale - Ad Set", "daily_budget": 1500, "targeting": {"geo_locations": {"countries": ["US"]}}},
    "ads": [{
        "name": "Spring Sale - Ad 1",
        "status": "PAUSED",
        "creative": {"name": "Creative", "object_story_spec": {"page_id": "page_1", "link_data": {"link": "https://x.example"}}},
        "destination": {"type": "website", "website_url": "https://x.example"},
        "tracking": {"url_tags": "utm_source=facebook"},
    }],
}


class GraphRecorder:
    """Answers Graph API calls with sequential ids and records what was sent.

    Requests whose path ends with ``fail_on`` get ``error``; with ``fail_times``
    only the first N of them fail.
    """

    def __init__(
        self, fail_on: str | None = None, error: dict | None = None, status_code: int = 400,
        fail_times: int | None = None,
    ):
        self.requests: list[tuple[str, dict]] = []
        self.methods: list[str] = []
        self.fail_on = fail_on
        self.error = error
        self.status_code = status_code
        self.fail_times = fail_times
        self.failures = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append((path, form))
        self.methods.append(request.method)
        if self.fail_on and path.endswith(self.fail_on):
            if self.fail_times is None or self.failures < self.fail_times:
                self.failures += 1
                return httpx.Response(self.status_code, json={"error": self.error})
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True})
        edge = path.rsplit("/", 1)[-1]
        return httpx.Response(200, json={"id": f"{edge}_{len(self.requests)}"})

    def calls(self) -> list[str]:
        """``"POST campaigns"`` / ``"DELETE adsets_2"`` per request."""
        return [f"{m} {p.rsplit('/', 1)[-1]}" for m, (p, _) in zip(self.methods, self.requests)]


def _service(handler) -> MetaAPIService:
    service = MetaAPIService(transport=httpx.MockTransport(handler))
    service.retry_base_delay = 0
    return service


# ---------------------------------------------------------------------------
# publish_ad
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_creates_objects_in_order():
    graph = GraphRecorder()
    result = await _service(graph).publish_ad("token", "123", PUBLISH_DATA)

    paths = [path.rsplit("/", 2)[-2:] for path, _ in graph.requests]
    assert paths == [
        ["act_123", "campaigns"],
        ["act_123", "adsets"],
        ["act_123", "adcreatives"],
        ["act_123", "ads"],
    ]
    assert result["campaign_id"] == "campaigns_1"
    assert result["adset_id"] == "adsets_2"
    assert result["creative_id"] == "adcreatives_3"
    assert result["ad_id"] == "ads_4"
    assert result["ad_ids"] == ["ads_4"]

    adset_form = graph.requests[1][1]
    assert adset_form["campaign_id"] == "campaigns_1"
    assert json.loads(adset_form["targeting"]) == {"geo_locations": {"countries": ["US"]}}

    ad_form = graph.requests[3][1]
    assert json.loads(ad_form["creative"]) == {"creative_id": "adcreatives_3"}
    assert "destination" not in ad_form
    assert "tracking" not in ad_form


@pytest.mark.asyncio
async def test_publish_reuses_existing_campaign_and_adset():
    graph = GraphRecorder()
    result = await _service(graph).publish_ad(
        "token", "act_123", PUBLISH_DATA, existing_campaign_id="c_9", existing_adset_id="s_9",
    )
    assert [path.rsplit("/", 1)[-1] for path, _ in graph.requests] == ["adcreatives", "ads"]
    assert result["campaign_id"] == "c_9"
    assert graph.requests[1][1]["adset_id"] == "s_9"


@pytest.mark.asyncio
async def test_graph_error_is_classified():
    graph = GraphRecorder(
        fail_on="adsets",
        error={"message": "Invalid parameter", "code": 100, "error_subcode": 1487390},
    )
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)

    error = exc_info.value
    assert error.message == "Invalid parameter"
    assert error.code == 100
    assert error.subcode == 1487390
    assert error.status_code == 400
    assert error.error_code == ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_expired_token_error():
    graph = GraphRecorder(
        fail_on="campaigns",
        error={"message": "Error validating access token", "code": 190},
        status_code=401,
    )
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)
    assert exc_info.value.error_code == ErrorCode.TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_timeout_becomes_network_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(MetaAPIError) as exc_info:
        await _service(handler).publish_ad("token", "act_123", PUBLISH_DATA)
    assert exc_info.value.error_code == ErrorCode.NETWORK_ERROR


# ---------------------------------------------------------------------------
# Rollback of partial publishes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failed_ad_rolls_back_created_objects():
    graph = GraphRecorder(fail_on="/ads", error={"message": "Invalid parameter", "code": 100})
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)

    assert graph.calls() == [
        "POST campaigns",
        "POST adsets",
        "POST adcreatives",
        "POST ads",
        "DELETE adsets_2",
        "DELETE campaigns_1",
        "DELETE adcreatives_3",
    ]
    error = exc_info.value
    assert error.message == "Invalid parameter"
    assert error.rolled_back == ["adsets_2", "campaigns_1", "adcreatives_3"]
    assert error.orphaned == {}


@pytest.mark.asyncio
async def test_rollback_never_deletes_reused_objects():
    graph = GraphRecorder(fail_on="/ads", error={"message": "Invalid parameter", "code": 100})
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad(
            "token", "act_123", PUBLISH_DATA, existing_campaign_id="c_9", existing_adset_id="s_9",
        )
    assert graph.calls() == ["POST adcreatives", "POST ads", "DELETE adcreatives_1"]
    assert exc_info.value.orphaned == {}


@pytest.mark.asyncio
async def test_undeletable_objects_are_reported_as_orphaned():
    graph = GraphRecorder(fail_on="/ads", error={"message": "Invalid parameter", "code": 100})

    def handler(request):
        if request.method == "DELETE" and request.url.path.endswith("/campaigns_1"):
            return httpx.Response(400, json={"error": {"message": "Cannot delete", "code": 100}})
        return graph(request)

    with pytest.raises(MetaAPIError) as exc_info:
        await _service(handler).publish_ad("token", "act_123", PUBLISH_DATA)

    error = exc_info.value
    assert error.message == "Invalid parameter"
    assert error.rolled_back == ["adsets_2", "adcreatives_3"]
    assert error.orphaned == {"campaign_id": "campaigns_1"}


# ---------------------------------------------------------------------------
# Retry with backoff
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_server_error_is_retried():
    graph = GraphRecorder(
        fail_on="/campaigns",
        error={"message": "Service temporarily unavailable", "code": 2},
        status_code=500,
        fail_times=1,
    )
    result = await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)
    assert graph.calls() == ["POST campaigns", "POST campaigns", "POST adsets", "POST adcreatives", "POST ads"]
    assert result["campaign_id"] == "campaigns_2"


@pytest.mark.asyncio
async def test_rate_limit_error_is_retried():
    graph = GraphRecorder(
        fail_on="/campaigns",
        error={"message": "User request limit reached", "code": 17},
        fail_times=2,
    )
    result = await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)
    assert graph.calls()[:3] == ["POST campaigns"] * 3
    assert result["ad_id"] == "ads_6"


@pytest.mark.asyncio
async def test_retries_are_bounded():
    graph = GraphRecorder(fail_on="/campaigns", error={"message": "Unavailable", "code": 2}, status_code=503)
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)
    assert graph.calls() == ["POST campaigns"] * 3
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_validation_error_is_not_retried():
    graph = GraphRecorder(fail_on="/campaigns", error={"message": "Invalid parameter", "code": 100})
    with pytest.raises(MetaAPIError):
        await _service(graph).publish_ad("token", "act_123", PUBLISH_DATA)
    assert graph.calls() == ["POST campaigns"]


def test_backoff_doubles_up_to_cap():
    service = MetaAPIService()
    service.retry_base_delay = 1.0
    service.retry_max_delay = 10.0
    assert [service._backoff(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


# ---------------------------------------------------------------------------
# Post-publish verification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_verify_publish_reports_missing_and_unexpected_status():
    objects = {
        "c_1": {"id": "c_1", "name": "Spring Sale", "status": "PAUSED"},
        "s_1": {"id": "s_1", "name": "Spring Sale - Ad Set", "status": "ACTIVE"},
    }
    seen = []

    def handler(request):
        object_id = request.url.path.rsplit("/", 1)[-1]
        seen.append((request.method, object_id, request.url.params.get("fields")))
        if object_id in objects:
            return httpx.Response(200, json=objects[object_id])
        return httpx.Response(400, json={"error": {"message": "Unsupported get request", "code": 100}})

    result = await _service(handler).verify_publish("token", "c_1", "s_1", ["a_1"])

    assert seen == [("GET", "c_1", "id,name,status"), ("GET", "s_1", "id,name,status"), ("GET", "a_1", "id,name,status")]
    assert result["success"] is False
    assert result["campaign_exists"] is True
    assert result["adset_exists"] is True
    assert result["all_ads_exist"] is False
    assert result["warnings"] == ["Ad set status is ACTIVE, expected PAUSED"]
    assert result["errors"] == ["Ad 1 a_1 verification failed: Unsupported get request"]


@pytest.mark.asyncio
async def test_verify_publish_without_recorded_ids():
    graph = GraphRecorder()
    result = await _service(graph).verify_publish("token", None, None, ["a_1"])
    assert result["success"] is False
    assert result["errors"][:2] == ["Campaign has no Meta id recorded", "Ad set has no Meta id recorded"]
    assert graph.calls() == ["GET a_1"]


@pytest.mark.asyncio
async def test_publish_without_ads_is_rejected():
    graph = GraphRecorder()
    with pytest.raises(MetaAPIError) as exc_info:
        await _service(graph).publish_ad("token", "act_123", {**PUBLISH_DATA, "ads": []})
    assert exc_info.value.error_code == ErrorCode.VALIDATION_ERROR
    assert graph.requests == []


@pytest.mark.asyncio
async def test_update_ad_status_posts_status():
    graph = GraphRecorder()
    await _service(graph).update_ad_status("token", "ad_42", "PAUSED")
    path, form = graph.requests[0]
    assert path.endswith("/ad_42")
    assert form == {"status": "PAUSED"}


def test_token_encryption_round_trip():
    service = MetaAPIService()
    service._fernet = Fernet(Fernet.generate_key())
    encrypted = service.encrypt_token("user-token")
    assert encrypted != "user-token"
    assert service.decrypt_token(encrypted) == "user-token"


def test_normalize_ad_account_id():
    assert normalize_ad_account_id("123") == "act_123"
    assert normalize_ad_account_id("act_123") == "act_123"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("code,message,expected", [
    (100, "Invalid parameter", ErrorCode.VALIDATION_ERROR),
    (190, "Error validating access token", ErrorCode.TOKEN_EXPIRED),
    (200, "Permissions error", ErrorCode.POLICY_VIOLATION),
    (17, "User request limit reached", ErrorCode.API_ERROR),
    (2654, "Ad account has no payment method", ErrorCode.PAYMENT_REQUIRED),
    (1487301, "Ad rejected", ErrorCode.POLICY_VIOLATION),
    (2, "Service temporarily unavailable", ErrorCode.API_ERROR),
    (None, "Please add a payment method", ErrorCode.PAYMENT_REQUIRED),
    (None, "This ad violates our policies", ErrorCode.POLICY_VIOLATION),
    ("nonsense", "something odd", ErrorCode.API_ERROR),
])
def test_classify_meta_error(code, message, expected):
    assert classify_meta_error(code, message).code == expected


def test_rate_limit_codes_are_tagged():
    assert classify_meta_error(613, "Calls limited").category == "rate_limit"


def test_user_facing_falls_back_to_unknown():
    assert user_facing(ErrorCode.CONFLICT)["title"] == "Unknown Error"
    assert "payment method" in user_facing(ErrorCode.PAYMENT_REQUIRED)["user_message"]
