import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from lookgen.core.exceptions import TransportError
from lookgen.engines.generation.client import HttpGenerationClient
from lookgen.engines.generation.repository import RestWardrobeRepository
from lookgen.modules.jobs.models import JobStatus, JobType
from lookgen.modules.outfits.models import WardrobeItem

API_URL = "https://project.example.co"
RUNNER_URL = "https://app.example.co/.netlify/functions/ai-job-runner"


def _job_row(**overrides):
    row = {
        "id": "job-1",
        "owner_user_id": "user-1",
        "job_type": "outfit_render",
        "status": "queued",
        "input": {},
        "result": None,
        "error": None,
        "created_at": "2025-01-05T10:00:00+00:00",
    }
    row.update(overrides)
    return row


def _client(handler) -> HttpGenerationClient:
    return HttpGenerationClient(
        api_url=API_URL,
        api_key="anon-key",
        runner_url=RUNNER_URL,
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_create_job_persists_queued_row():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["prefer"] = request.headers.get("prefer")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=[_job_row(input=seen["body"]["input"])])

    job = await _client(handler).create_job("user-1", JobType.OUTFIT_RENDER, {"outfit_id": "outfit-1"})

    assert seen["method"] == "POST"
    assert seen["path"] == "/rest/v1/ai_jobs"
    assert seen["prefer"] == "return=representation"
    assert seen["body"] == {
        "owner_user_id": "user-1",
        "job_type": "outfit_render",
        "input": {"outfit_id": "outfit-1"},
        "status": "queued",
    }
    assert job.id == "job-1"
    assert job.status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_create_job_error_status_is_transport_error():
    client = _client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(TransportError) as exc_info:
        await client.create_job("user-1", JobType.PRODUCT_SHOT, {})

    assert exc_info.value.details["http_status"] == 500


@pytest.mark.asyncio
async def test_get_job_fresh_bypasses_caches():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["cache_control"] = request.headers.get("cache-control")
        seen["pragma"] = request.headers.get("pragma")
        return httpx.Response(200, json=[_job_row(status="succeeded", result={"image_id": "img-1"})])

    job = await _client(handler).get_job_fresh("job-1")

    assert seen["params"]["id"] == "eq.job-1"
    assert seen["cache_control"] == "no-store"
    assert seen["pragma"] == "no-cache"
    assert job.status == JobStatus.SUCCEEDED
    assert job.result_image_id() == "img-1"


@pytest.mark.asyncio
async def test_get_job_fresh_missing_job():
    client = _client(lambda request: httpx.Response(200, json=[]))

    assert await client.get_job_fresh("job-404") is None


@pytest.mark.asyncio
async def test_trigger_posts_job_id_to_runner():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, json={"accepted": True})

    await _client(handler).trigger_execution("job-1")

    assert seen["url"] == RUNNER_URL
    assert seen["body"] == {"job_id": "job-1"}


@pytest.mark.asyncio
async def test_trigger_timeout_is_ignored():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    await _client(handler).trigger_execution("job-1")


@pytest.mark.asyncio
async def test_trigger_network_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        await _client(handler).trigger_execution("job-1")

    assert exc_info.value.details["service"] == "job_runner"
    assert exc_info.value.job_id == "job-1"


def test_invalid_runner_url_is_rejected():
    with pytest.raises(ValueError):
        HttpGenerationClient(api_url=API_URL, runner_url="ai-job-runner")


@pytest.mark.asyncio
async def test_active_job_lookup_filters_and_orders_newest_first():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[
            _job_row(id="job-3", job_type="product_shot", status="running", input={"wardrobe_item_id": "item-9"}),
            _job_row(id="job-2", job_type="product_shot", status="queued", input={"wardrobe_item_id": "item-1"}),
        ])

    job = await _client(handler).get_active_job(
        "user-1",
        JobType.PRODUCT_SHOT,
        lambda candidate: candidate.input.get("wardrobe_item_id") == "item-1"
    )

    assert job.id == "job-2"
    assert seen["params"]["owner_user_id"] == "eq.user-1"
    assert seen["params"]["job_type"] == "eq.product_shot"
    assert seen["params"]["status"] == "in.(queued,processing,running)"
    assert seen["params"]["order"] == "created_at.desc"
    assert seen["params"]["limit"] == "10"


@pytest.mark.asyncio
async def test_active_job_lookup_without_match_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    assert await _client(handler).get_active_job("user-1", JobType.OUTFIT_RENDER) is None


@pytest.mark.asyncio
async def test_recent_job_lookup_is_limited_to_the_last_minute():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[_job_row(status="succeeded", result={"image_id": "render-1"})])

    job = await _client(handler).get_recent_job("user-1", JobType.OUTFIT_RENDER)

    assert job.status == JobStatus.SUCCEEDED
    assert seen["params"]["status"] == "in.(succeeded,failed)"
    assert seen["params"]["order"] == "updated_at.desc"
    assert seen["params"]["limit"] == "10"
    assert seen["params"]["updated_at"].startswith("gte.")
    since = datetime.fromisoformat(seen["params"]["updated_at"][len("gte."):])
    age = datetime.now(timezone.utc) - since
    assert timedelta(seconds=59) <= age <= timedelta(seconds=70)


@pytest.mark.asyncio
async def test_lookup_error_status_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(TransportError):
        await _client(handler).get_recent_job("user-1", JobType.PRODUCT_SHOT)


# =============================================================================
# Wardrobe Repository
# =============================================================================

def _repository(handler) -> RestWardrobeRepository:
    return RestWardrobeRepository(api_url=API_URL, api_key="anon-key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_reference_assets_lookup():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rest/v1/user_settings"
        assert request.url.params["user_id"] == "eq.user-1"
        return httpx.Response(200, json=[{"body_shot_image_id": "body-1", "headshot_image_id": None}])

    assets = await _repository(handler).get_reference_assets("user-1")

    assert assets.body_shot_image_id == "body-1"
    assert assets.missing() == ["headshot"]


@pytest.mark.asyncio
async def test_working_copy_creates_outfit_and_items():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/outfits"):
            return httpx.Response(201, json=[{"id": "outfit-9"}])
        return httpx.Response(201)

    items = [WardrobeItem(id="item-1", category_id="cat-1"), WardrobeItem(id="item-2")]
    outfit_id = await _repository(handler).create_working_copy("user-1", "Try on: Weekend", items)

    assert outfit_id == "outfit-9"
    (outfit_path, outfit_body), (items_path, items_body) = requests
    assert outfit_path == "/rest/v1/outfits"
    assert outfit_body["visibility"] == "private"
    assert items_path == "/rest/v1/outfit_items"
    assert [row["wardrobe_item_id"] for row in items_body] == ["item-1", "item-2"]
    assert [row["position"] for row in items_body] == [0, 1]


@pytest.mark.asyncio
async def test_category_names_are_batched():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["id"] = request.url.params["id"]
        return httpx.Response(200, json=[{"id": "cat-1", "name": "Tops"}, {"id": "cat-2", "name": "Shoes"}])

    names = await _repository(handler).get_category_names(["cat-2", "cat-1", "cat-2"])

    assert seen["id"] == "in.(cat-1,cat-2)"
    assert names == {"cat-1": "Tops", "cat-2": "Shoes"}


@pytest.mark.asyncio
async def test_category_names_skip_request_when_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _repository(handler).get_category_names([]) == {}


@pytest.mark.asyncio
async def test_archive_soft_deletes():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["id"] = request.url.params["id"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    await _repository(handler).archive("outfit-9")

    assert seen["method"] == "PATCH"
    assert seen["id"] == "eq.outfit-9"
    assert "archived_at" in seen["body"]
