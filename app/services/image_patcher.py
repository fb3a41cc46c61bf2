"""
Applies approved changes onto resume page images.

Pages are patched concurrently. Within a page the changes form a chain: each edit is
applied to the image produced by the previous one, never to the original, because
every edit prompt describes the page as it currently looks.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Sequence

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from app.config import settings
from app.models.gateway import ImagePart, Modality
from app.models.resume import ChangeDetail
from app.services.errors import GatewayError, ImagePatchFailure
from app.services.gateway import ModelGateway
from app.utils.parsers import parse_data_uri, to_data_uri

logger = logging.getLogger(__name__)


def build_patch_prompt(change: ChangeDetail) -> str:
    if change.is_addition:
        return f"""
        You are a precise resume image editor. Edit the provided resume page image.

        # Task
        In the "{change.section}" section, add the following text:
        <new_text>
        {change.new_text}
        </new_text>

        # Rules
        - Insert or append the text where it fits naturally within that section.
        - Match the font, size, color, spacing and alignment of the surrounding text.
        - Do not change anything else on the page.
        - Return only the edited page image.
        """
    return f"""
    You are a precise resume image editor. Edit the provided resume page image.

    # Task
    In the "{change.section}" section, find the text below. It was transcribed from the image
    and may not match character for character, so locate it by meaning:
    <original_text>
    {change.original_text}
    </original_text>

    Replace it with:
    <new_text>
    {change.new_text}
    </new_text>

    # Rules
    - Reflow the section only as much as the new text requires.
    - Preserve the font, size, color and alignment of everything you do not replace.
    - Do not change anything else on the page.
    - Return only the edited page image.
    """


class _NoUsableImage(Exception):
    """The reply carried no image, or returned the input unchanged."""


class ImagePatchEngine:
    def __init__(
        self,
        gateway: ModelGateway,
        max_retries: int = settings.PATCH_MAX_RETRIES,
        base_delay: float = settings.PATCH_RETRY_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    async def _attempt(self, image: ImagePart, prompt: str) -> ImagePart:
        response = await self.gateway.generate([image], prompt, modalities=(Modality.IMAGE,))
        images = response.images
        if not images:
            raise _NoUsableImage("no image returned")
        if images[0].data == image.data:
            raise _NoUsableImage("image unchanged")
        return images[0]

    async def apply_change(self, image: ImagePart, change: ChangeDetail) -> ImagePart:
        """
        One atomic patch with bounded retry.

        An attempt fails on a gateway error, when the reply carries no image, or when
        the image is byte-identical to the input (a best-effort no-op check). Attempt n
        is followed by a wait of n * base_delay. After max_retries + 1 failed attempts
        the change raises ImagePatchFailure.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type((GatewayError, _NoUsableImage)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
        )
        try:
            return await retrying(self._attempt, image, build_patch_prompt(change))
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                "Giving up on page %d after %d attempts for '%s': %s",
                change.page_index + 1, e.last_attempt.attempt_number, change.summary, last_error,
            )
            raise ImagePatchFailure(change.page_index, change.summary) from last_error

    async def patch_page(self, page_index: int, image_uri: str, changes: Sequence[ChangeDetail]) -> str:
        if not changes:
            return image_uri

        current = parse_data_uri(image_uri, accepted=None)
        for position, change in enumerate(changes, start=1):
            logger.info("Page %d: applying change %d/%d", page_index + 1, position, len(changes))
            current = await self.apply_change(current, change)
        return to_data_uri(current)

    async def patch_pages(self, pages: Sequence[str], applied_changes: Sequence[ChangeDetail]) -> List[str]:
        """Patch every page; output keeps page order and count. The first failure propagates."""
        by_page: Dict[int, List[ChangeDetail]] = defaultdict(list)
        for change in applied_changes:
            by_page[change.page_index].append(change)

        return list(await asyncio.gather(*(
            self.patch_page(index, uri, by_page.get(index, []))
            for index, uri in enumerate(pages)
        )))
