"""
Thin transport boundary to the Gemini backend.
No retries and no interpretation of the reply; callers own both.
"""
import logging
from typing import Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.config import settings
from app.models.gateway import GatewayResponse, ImagePart, Modality, ResponsePart
from app.services.errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)


class ModelGateway:
    def __init__(
        self,
        client: genai.Client,
        text_model: str = settings.TEXT_MODEL,
        image_model: str = settings.IMAGE_MODEL,
    ):
        self.client = client
        self.text_model = text_model
        self.image_model = image_model

    @classmethod
    def from_env(cls) -> "ModelGateway":
        if not settings.GEMINI_API_KEY:
            raise ConfigurationError("GEMINI_API_KEY environment variable not set")
        return cls(genai.Client(api_key=settings.GEMINI_API_KEY))

    async def generate(
        self,
        images: Sequence[ImagePart],
        prompt: str,
        modalities: Sequence[Modality] = (Modality.TEXT,),
        model: Optional[str] = None,
    ) -> GatewayResponse:
        model = model or (self.image_model if Modality.IMAGE in modalities else self.text_model)
        contents = [types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images]
        contents.append(types.Part.from_text(text=prompt))
        config = types.GenerateContentConfig(response_modalities=[m.value for m in modalities])

        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            raise GatewayError(f"{e.code} {e.message or e.status}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Model backend unreachable: {e}") from e

        return _to_gateway_response(response)


def _to_gateway_response(response: types.GenerateContentResponse) -> GatewayResponse:
    parts = []
    candidates = response.candidates or []
    if candidates and candidates[0].content and candidates[0].content.parts:
        for part in candidates[0].content.parts:
            if part.inline_data is not None and part.inline_data.data:
                parts.append(ResponsePart(mime_type=part.inline_data.mime_type, data=part.inline_data.data))
            elif part.text:
                parts.append(ResponsePart(text=part.text))
    else:
        logger.warning("Model reply had no candidate content")
    return GatewayResponse(parts=parts)
