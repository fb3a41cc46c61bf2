"""
Transport-level types shared by the model gateway and its callers.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Modality(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"


@dataclass(frozen=True)
class ImagePart:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class ResponsePart:
    """Either a text segment or an inline image segment"""
    text: Optional[str] = None
    mime_type: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def is_image(self) -> bool:
        return self.data is not None


@dataclass
class GatewayResponse:
    parts: List[ResponsePart] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)

    @property
    def images(self) -> List[ImagePart]:
        return [ImagePart(p.mime_type or "image/png", p.data) for p in self.parts if p.is_image]
