"""
Two-phase tailoring pipeline as an explicit state machine.

    INPUT -> GENERATING_CANDIDATES -> REVIEWING -> FINALIZING -> RESULTS

A failure while generating returns to INPUT; a failure while finalizing returns to
REVIEWING. Entered data, candidates and review toggles survive either way.
"""
import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from app.config import settings
from app.models.resume import (
    ChangeDetail,
    FinalAssetsResult,
    GeneratedAssets,
    JobDetails,
    TextGenerationResult,
)
from app.services import ai_service
from app.services.errors import ChangePageOutOfRange, InvalidImage, InvalidTransition, classify_error
from app.services.gateway import ModelGateway
from app.services.image_patcher import ImagePatchEngine
from app.services.review import ChangeReviewState
from app.utils.parsers import parse_data_uri, text_contains

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INPUT = "input"
    GENERATING_CANDIDATES = "generating_candidates"
    REVIEWING = "reviewing"
    FINALIZING = "finalizing"
    RESULTS = "results"


class TailoringSession:
    def __init__(self, gateway: ModelGateway, patch_engine: Optional[ImagePatchEngine] = None):
        self.id = uuid.uuid4().hex
        self.gateway = gateway
        self.patch_engine = patch_engine or ImagePatchEngine(gateway)
        self._clear()

    def _clear(self) -> None:
        self.stage = Stage.INPUT
        self.error: Optional[str] = None
        self.job: Optional[JobDetails] = None
        self.pages: List[str] = []
        self.candidates: Optional[TextGenerationResult] = None
        self.original_text: str = ""
        self.review: Optional[ChangeReviewState] = None
        self.applied_snapshot: List[ChangeDetail] = []
        self.final: Optional[FinalAssetsResult] = None
        self.assets: Optional[GeneratedAssets] = None

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def _require(self, stage: Stage, action: str) -> None:
        if self.stage != stage:
            raise InvalidTransition(self.stage.value, action)

    def submit_input(self, job: JobDetails, pages: Sequence[str]) -> None:
        self._require(Stage.INPUT, "submit input")
        if not pages:
            raise InvalidImage("Please upload at least one resume image.")
        for uri in pages:
            parse_data_uri(uri)
        self.job = job
        self.pages = list(pages)
        self.error = None

    async def generate_candidates(self) -> Stage:
        """Phase 1: candidate text assets and transcription, concurrently."""
        self._require(Stage.INPUT, "generate candidates")
        if self.job is None or not self.pages:
            raise InvalidTransition(self.stage.value, "generate candidates without input")

        self.stage = Stage.GENERATING_CANDIDATES
        self.error = None
        images = [parse_data_uri(uri) for uri in self.pages]
        logger.info("Generating candidates for %d page(s)", len(images))

        try:
            candidates, original_text = await asyncio.gather(
                ai_service.generate_text_assets(self.gateway, images, self.job),
                ai_service.extract_original_text(self.gateway, images),
            )
            for change in candidates.changes:
                if not 0 <= change.page_index < self.page_count:
                    raise ChangePageOutOfRange(change.id, change.page_index, self.page_count)
        except Exception as e:
            logger.error("Candidate generation failed: %s", e)
            self.error = classify_error(e)
            self.stage = Stage.INPUT
            raise

        self.candidates = candidates.model_copy(
            update={"changes": _mark_verified(candidates.changes, original_text)}
        )
        self.original_text = original_text
        self.review = ChangeReviewState(self.candidates.changes)
        self.stage = Stage.REVIEWING
        logger.info("Candidates ready: %d change(s)", len(self.candidates.changes))
        return self.stage

    async def finalize(self) -> Stage:
        """Phase 2: final text and patched images from the applied changes, concurrently."""
        self._require(Stage.REVIEWING, "finalize")
        self.stage = Stage.FINALIZING
        self.error = None
        self.applied_snapshot = self.review.applied_changes()
        logger.info(
            "Finalizing with %d applied change(s) across %d page(s)",
            len(self.applied_snapshot), self.page_count,
        )

        try:
            final_texts, final_images = await asyncio.gather(
                ai_service.synthesize_final_text(
                    self.gateway,
                    self.original_text,
                    self.candidates.changes,
                    self.applied_snapshot,
                    self.page_count,
                ),
                self.patch_engine.patch_pages(self.pages, self.applied_snapshot),
            )
        except Exception as e:
            logger.error("Finalization failed: %s", e)
            self.error = classify_error(e)
            self.applied_snapshot = []
            self.stage = Stage.REVIEWING
            raise

        self.final = FinalAssetsResult(final_images=final_images, final_texts=final_texts)
        self.assets = GeneratedAssets(
            tailored_resume_images=final_images,
            cover_letter=self.candidates.cover_letter,
            summary=self.candidates.summary,
            original_resume_text=self.original_text,
            rewritten_resume_text=final_texts,
            applied_changes=self.applied_snapshot,
            ats_keywords=self.candidates.ats_keywords,
        )
        self.stage = Stage.RESULTS
        return self.stage

    def reset(self) -> None:
        self._clear()


def _mark_verified(changes: Sequence[ChangeDetail], transcription: str) -> List[ChangeDetail]:
    """Flag whether each replacement's original text appears in the transcription."""
    marked = []
    for change in changes:
        if change.is_addition:
            marked.append(change)
            continue
        found = text_contains(transcription, change.original_text)
        if not found:
            logger.info("Original text for %s not found in transcription", change.id)
        marked.append(change.model_copy(update={"original_text_found": found}))
    return marked


class SessionStore:
    """
    Process-local session registry; nothing is persisted.

    Sessions hold every page image in memory, so the store is bounded: sessions idle
    for longer than idle_ttl seconds are dropped, and when the store is full the least
    recently used session makes room for a new one.
    """

    def __init__(
        self,
        max_sessions: int = settings.MAX_SESSIONS,
        idle_ttl: float = settings.SESSION_IDLE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._sessions: "OrderedDict[str, TailoringSession]" = OrderedDict()
        self._last_access: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, gateway: ModelGateway) -> TailoringSession:
        self._evict()
        session = TailoringSession(gateway)
        self._sessions[session.id] = session
        self._last_access[session.id] = self.clock()
        return session

    def get(self, session_id: str) -> TailoringSession:
        session = self._sessions[session_id]
        self._sessions.move_to_end(session_id)
        self._last_access[session_id] = self.clock()
        return session

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id)
        del self._last_access[session_id]
        session.reset()

    def _evict(self) -> None:
        now = self.clock()
        expired = [sid for sid, seen in self._last_access.items() if now - seen > self.idle_ttl]
        for session_id in expired:
            logger.info("Evicting idle session %s", session_id)
            self.discard(session_id)
        while self._sessions and len(self._sessions) >= self.max_sessions:
            session_id = next(iter(self._sessions))
            logger.info("Session store full, evicting %s", session_id)
            self.discard(session_id)
