import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, FrozenSet, Optional

from fastapi import UploadFile

from app.config.settings import ACCEPTED_IMAGE_TYPES
from app.models.gateway import ImagePart
from app.services.errors import InvalidImage, MalformedModelOutput

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


def extract_json(raw_text: str, context: str) -> Dict[str, Any]:
    """
    Locate and parse the single JSON object in a loosely formatted model reply.

    A fenced code block wins when present; otherwise the span from the first '{'
    to the last '}' is used. Anything short of a fully valid object raises
    MalformedModelOutput carrying the context label and the raw reply.
    """
    text = raw_text or ""
    match = _FENCED_BLOCK.search(text)
    if match:
        candidate = match.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        candidate = text[start:end + 1] if start != -1 and end > start else ""

    if not candidate:
        _log_raw(context, text)
        raise MalformedModelOutput(context, text, "no JSON object found")

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as e:
        _log_raw(context, text)
        raise MalformedModelOutput(context, text, str(e)) from e

    if not isinstance(payload, dict):
        _log_raw(context, text)
        raise MalformedModelOutput(context, text, "top-level JSON value is not an object")
    return payload


def _log_raw(context: str, raw_text: str) -> None:
    logger.error("Unparsable model reply during %s: %.500s", context, raw_text)
    logger.debug("Full raw reply during %s:\n%s", context, raw_text)


# ---- Image intake ----

def parse_data_uri(uri: str, accepted: Optional[FrozenSet[str]] = ACCEPTED_IMAGE_TYPES) -> ImagePart:
    """
    Split a 'data:<mime>;base64,<payload>' page into its mime type and bytes.
    Pass accepted=None to skip the intake mime check (model output may use other types).
    """
    match = _DATA_URI.match(uri or "")
    if not match:
        raise InvalidImage("Page is not a base64 data URI.")
    mime_type = match.group("mime").lower()
    if accepted is not None and mime_type not in accepted:
        raise InvalidImage(f"Unsupported image type '{mime_type}'. Please upload PNG or JPEG.")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImage("Page payload is not valid base64.") from e
    if not data:
        raise InvalidImage("Page payload is empty.")
    return ImagePart(mime_type=mime_type, data=data)


def to_data_uri(part: ImagePart) -> str:
    return f"data:{part.mime_type};base64,{base64.b64encode(part.data).decode('ascii')}"


async def read_image_upload(file: UploadFile) -> str:
    content_type = (file.content_type or "").lower()
    if content_type not in ACCEPTED_IMAGE_TYPES:
        raise InvalidImage(
            f"Unsupported file '{file.filename}'. Please upload PNG or JPEG images."
        )
    content = await file.read()
    if not content:
        raise InvalidImage(f"File '{file.filename}' is empty.")
    return to_data_uri(ImagePart(mime_type=content_type, data=content))


# ---- Text matching ----

def normalize_text(text: str) -> str:
    """Lowercase and collapse all whitespace runs to single spaces."""
    return re.sub(r"\s+", " ", text or "").strip().lower()


def text_contains(haystack: str, needle: str) -> bool:
    needle = normalize_text(needle)
    return bool(needle) and needle in normalize_text(haystack)
