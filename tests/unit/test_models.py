import pytest
from pydantic import ValidationError as PydanticValidationError

from lookgen.engines.compositing.sources import pick_source_image, pick_source_images
from lookgen.modules.jobs.models import CompositeResult, Job, JobStatus, JobType, PollState
from lookgen.modules.outfits.models import (
    GenerationRequest,
    ItemImage,
    ReferenceAssets,
    WardrobeItem,
    selection_signature,
)


def test_job_accepts_store_row_shape():
    job = Job.model_validate({
        "id": "job-1",
        "owner_user_id": "user-1",
        "job_type": "outfit_render",
        "status": "running",
        "input": {"outfit_id": "outfit-1"},
        "result": None,
        "error": None,
        "created_at": "2025-01-05T10:00:00+00:00",
    })

    assert job.owner_id == "user-1"
    assert job.job_type == JobType.OUTFIT_RENDER
    assert job.status == JobStatus.PROCESSING
    assert not job.is_terminal


def test_job_rejects_unknown_status():
    with pytest.raises(PydanticValidationError):
        Job(id="job-1", owner_id="user-1", job_type="product_shot", status="paused")


@pytest.mark.parametrize(
    "current, new, allowed",
    [
        (JobStatus.QUEUED, JobStatus.PROCESSING, True),
        (JobStatus.QUEUED, JobStatus.SUCCEEDED, True),
        (JobStatus.PROCESSING, JobStatus.FAILED, True),
        (JobStatus.PROCESSING, JobStatus.QUEUED, False),
        (JobStatus.SUCCEEDED, JobStatus.FAILED, False),
        (JobStatus.FAILED, JobStatus.PROCESSING, False),
        (JobStatus.SUCCEEDED, JobStatus.SUCCEEDED, True),
    ],
)
def test_status_transitions_are_monotonic(current, new, allowed):
    assert JobStatus.can_transition(current, new) is allowed


def test_result_image_id_reads_known_keys():
    job = Job(
        id="job-1",
        owner_id="user-1",
        job_type=JobType.HEADSHOT_GENERATE,
        status=JobStatus.SUCCEEDED,
        result={"generated_image_id": "img-7"}
    )

    assert job.result_image_id() == "img-7"
    assert job.model_copy(update={"result": None}).result_image_id() is None


def test_poll_state_tracks_exhaustion():
    state = PollState("job-1", max_attempts=2, interval_ms=1500)

    assert state.interval_seconds == 1.5
    assert state.active
    state.attempts_used = 2
    assert state.exhausted

    state.token.cancel()
    assert not state.active


def test_composite_result_matches_signature_only():
    composite = CompositeResult(selection_signature="a,b", storage_key="user-1/ai/stacked/grid-1.jpg")

    assert composite.matches("a,b")
    assert not composite.matches("b,a")


def test_selection_signature_is_ordered():
    first = WardrobeItem(id="a")
    second = WardrobeItem(id="b")

    assert selection_signature([first, second]) == "a,b"
    assert selection_signature([second, first]) == "b,a"
    assert GenerationRequest(owner_id="user-1", items=[first, second]).selection_signature == "a,b"


def test_reference_assets_report_missing_images():
    assert ReferenceAssets().missing() == ["body photo", "headshot"]
    assert ReferenceAssets(body_shot_image_id="b", headshot_image_id="h").missing() == []


def test_render_model_preference_order():
    assets = ReferenceAssets(ai_model_preference="gemini-2.5-flash-image")
    assert assets.render_model("default") == "gemini-2.5-flash-image"

    assets.ai_model_outfit_render = "gemini-3-pro-image"
    assert assets.render_model("default") == "gemini-3-pro-image"

    assert ReferenceAssets().render_model("default") == "default"


def test_product_shot_is_preferred_source_image():
    item = WardrobeItem(
        id="item-1",
        images=[
            ItemImage(image_id="a", storage_key="a.png", type="original", sort_order=0),
            ItemImage(image_id="b", storage_key="b.png", type="product_shot", sort_order=5),
        ]
    )

    assert pick_source_image(item).image_id == "b"


def test_lowest_sort_order_wins_without_product_shot():
    item = WardrobeItem(
        id="item-1",
        images=[
            ItemImage(image_id="a", storage_key="a.png", type="original"),
            ItemImage(image_id="b", storage_key="b.png", type="original", sort_order=3),
            ItemImage(image_id="c", storage_key="c.png", type="original", sort_order=1),
        ]
    )

    assert pick_source_image(item).image_id == "c"


def test_items_without_images_are_skipped():
    items = [
        WardrobeItem(id="item-1"),
        WardrobeItem(id="item-2", images=[ItemImage(image_id="x", storage_key="x.png")]),
    ]

    assert [image.image_id for image in pick_source_images(items)] == ["x"]
