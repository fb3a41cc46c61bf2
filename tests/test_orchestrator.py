"""
Tests for the two-phase state machine: transitions, error edges and bookkeeping.
"""
import time

import pytest

from app.models.resume import JobDetails
from app.services.errors import (
    ChangePageOutOfRange,
    GatewayError,
    ImagePatchFailure,
    InvalidImage,
    InvalidTransition,
    MalformedModelOutput,
    PageCountMismatch,
)
from app.services.image_patcher import ImagePatchEngine
from app.services.orchestrator import SessionStore, Stage, TailoringSession
from fakes import (
    FakeGateway,
    change,
    is_candidate_prompt,
    is_synthesis_prompt,
    page,
    pipeline_handler,
    text_response,
)

JOB = JobDetails(job_title="Engineer", company_name="Acme", job_description="Python and Go.")
PAGES = [page(b"p0"), page(b"p1")]
CHANGES = [
    change("Experience", "Led team", "Led a team of 5", 0, summary="Quantify team"),
    change("Experience", "Wrote code", "Shipped Go services", 0, summary="Mention Go"),
    change("Skills", "", "Go", 1, summary="Add Go"),
]
TRANSCRIPTION = "Jane Doe\nExperience\nLed team\nSkills\nPython"


async def _no_sleep(seconds):
    return None


def _session(handler, max_retries=2):
    gateway = FakeGateway(handler)
    engine = ImagePatchEngine(gateway, max_retries=max_retries, base_delay=0, sleep=_no_sleep)
    session = TailoringSession(gateway, patch_engine=engine)
    session.submit_input(JOB, PAGES)
    return session, gateway


@pytest.mark.asyncio
async def test_happy_path_reaches_results():
    session, gateway = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["final 1", "final 2"]))

    assert await session.generate_candidates() == Stage.REVIEWING
    assert session.original_text == TRANSCRIPTION
    assert len(session.candidates.changes) == 3

    assert await session.finalize() == Stage.RESULTS
    assets = session.assets
    assert len(assets.tailored_resume_images) == len(assets.rewritten_resume_text) == 2
    assert assets.rewritten_resume_text == ["final 1", "final 2"]
    assert assets.cover_letter == "Dear Hiring Manager,"
    assert assets.original_resume_text == TRANSCRIPTION
    assert [c.summary for c in assets.applied_changes] == ["Quantify team", "Mention Go", "Add Go"]
    assert session.final.final_images == assets.tailored_resume_images


@pytest.mark.asyncio
async def test_scenario_two_pages_one_rejected_change():
    session, gateway = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    await session.generate_candidates()

    rejected = session.candidates.changes[0]
    session.review.toggle(rejected.id)
    assert session.review.summary().affected_page_count == 2

    await session.finalize()

    image_calls = gateway.image_calls()
    assert len(image_calls) == 2
    prompts = " ".join(call.prompt for call in image_calls)
    assert "Led a team of 5" not in prompts
    assert "Shipped Go services" in prompts
    assert rejected not in session.assets.applied_changes


@pytest.mark.asyncio
async def test_zero_applied_changes_keeps_images_identical():
    session, gateway = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    await session.generate_candidates()
    session.review.reject_section("Experience")
    session.review.reject_section("Skills")

    await session.finalize()

    assert session.assets.tailored_resume_images == PAGES
    assert gateway.image_calls() == []


@pytest.mark.asyncio
async def test_original_text_verification_flags():
    session, _ = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    await session.generate_candidates()

    flags = [c.original_text_found for c in session.candidates.changes]
    assert flags == [True, False, None]
    assert session.review.summary().unverified_change_count == 1


@pytest.mark.asyncio
async def test_phase_one_runs_generator_and_extractor_together():
    session, gateway = _session(pipeline_handler(CHANGES, TRANSCRIPTION))
    gateway.delay = 0.3
    start = time.time()
    await session.generate_candidates()
    assert time.time() - start < 0.55


@pytest.mark.asyncio
async def test_out_of_range_page_index_returns_to_input():
    bad = CHANGES + [change("Awards", "", "Hackathon winner", 2)]
    session, _ = _session(pipeline_handler(bad, TRANSCRIPTION))

    with pytest.raises(ChangePageOutOfRange):
        await session.generate_candidates()

    assert session.stage == Stage.INPUT
    assert "page 3" in session.error
    assert session.job == JOB and session.pages == PAGES
    assert session.candidates is None


@pytest.mark.asyncio
async def test_phase_one_fails_fast_on_gateway_error():
    def handler(call):
        if is_candidate_prompt(call):
            raise GatewayError("429 Resource has been exhausted (e.g. check quota).")
        return text_response(TRANSCRIPTION)

    session, _ = _session(handler)
    with pytest.raises(GatewayError):
        await session.generate_candidates()

    assert session.stage == Stage.INPUT
    assert session.error == "You have exceeded your API quota. Please check your account."


@pytest.mark.asyncio
async def test_phase_one_retry_after_failure_reuses_input():
    replies = iter(["not json at all", None])

    def handler(call):
        if is_candidate_prompt(call):
            reply = next(replies)
            if reply is not None:
                return text_response(reply)
        return pipeline_handler(CHANGES, TRANSCRIPTION)(call)

    session, _ = _session(handler)
    with pytest.raises(MalformedModelOutput):
        await session.generate_candidates()
    assert session.stage == Stage.INPUT

    assert await session.generate_candidates() == Stage.REVIEWING
    assert session.error is None


@pytest.mark.asyncio
async def test_page_count_mismatch_returns_to_review_with_toggles_intact():
    session, _ = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["only one page"]))
    await session.generate_candidates()
    toggled = session.candidates.changes[1].id
    session.review.toggle(toggled)
    candidates = session.candidates

    with pytest.raises(PageCountMismatch):
        await session.finalize()

    assert session.stage == Stage.REVIEWING
    assert session.candidates is candidates
    assert session.review.is_applied(toggled) is False
    assert session.assets is None
    assert "expected text for 2 pages" in session.error


@pytest.mark.asyncio
async def test_patch_failure_discards_partial_results():
    def patch(call):
        return text_response("no image for you")

    handler = pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"], patch=patch)
    session, gateway = _session(handler, max_retries=1)
    await session.generate_candidates()

    with pytest.raises(ImagePatchFailure):
        await session.finalize()

    assert session.stage == Stage.REVIEWING
    assert session.final is None and session.assets is None
    assert "Please try again or deselect this change." in session.error


@pytest.mark.asyncio
async def test_invalid_transitions_are_rejected():
    session, _ = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    with pytest.raises(InvalidTransition):
        await session.finalize()

    await session.generate_candidates()
    with pytest.raises(InvalidTransition):
        await session.generate_candidates()
    with pytest.raises(InvalidTransition):
        session.submit_input(JOB, PAGES)


def test_submit_input_validates_pages():
    session = TailoringSession(FakeGateway(lambda call: None))
    with pytest.raises(InvalidImage):
        session.submit_input(JOB, [])
    with pytest.raises(InvalidImage):
        session.submit_input(JOB, [page(b"gif", "image/gif")])
    assert session.pages == []


@pytest.mark.asyncio
async def test_reset_returns_to_input_and_clears_state():
    session, _ = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    await session.generate_candidates()
    await session.finalize()

    session.reset()

    assert session.stage == Stage.INPUT
    assert session.job is None and session.pages == [] and session.assets is None


def test_session_store_lifecycle():
    store = SessionStore()
    session = store.create(FakeGateway(lambda call: None))
    assert store.get(session.id) is session
    store.discard(session.id)
    with pytest.raises(KeyError):
        store.get(session.id)


@pytest.mark.asyncio
async def test_synthesis_does_not_wait_for_patched_images():
    """Text synthesis prompt never carries page images."""
    session, gateway = _session(pipeline_handler(CHANGES, TRANSCRIPTION, ["a", "b"]))
    await session.generate_candidates()
    await session.finalize()

    synthesis_calls = [c for c in gateway.calls if is_synthesis_prompt(c)]
    assert len(synthesis_calls) == 1
    assert synthesis_calls[0].images == ()


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_session_store_evicts_idle_sessions():
    clock = _Clock()
    store = SessionStore(max_sessions=10, idle_ttl=60, clock=clock)
    gateway = FakeGateway(lambda call: None)
    stale = store.create(gateway)
    clock.now = 30
    active = store.create(gateway)

    clock.now = 80
    store.get(active.id)
    clock.now = 100
    store.create(gateway)

    assert len(store) == 2
    with pytest.raises(KeyError):
        store.get(stale.id)
    assert store.get(active.id) is active


def test_session_store_drops_least_recently_used_when_full():
    store = SessionStore(max_sessions=2, idle_ttl=3600, clock=_Clock())
    gateway = FakeGateway(lambda call: None)
    first, second = store.create(gateway), store.create(gateway)
    store.get(first.id)

    third = store.create(gateway)

    assert len(store) == 2
    with pytest.raises(KeyError):
        store.get(second.id)
    assert store.get(first.id) is first and store.get(third.id) is third
