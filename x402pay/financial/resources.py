"""
Paid resource results.

Paid AI endpoints answer ``{"success": true, "data": {...}}``. The shape of
``data`` depends on the endpoint; this module names the endpoint from its URL
and validates ``data`` into one of a few result variants.
"""

from __future__ import annotations

import base64
import re
from typing import Any, Dict, Literal, Optional, Tuple, Type, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from x402pay.utils.exceptions import MalformedResourceResult

_AI_PATH = re.compile(r"/api/ai/([^/]+)(?:/([^/]+))?/?$")

# (first segment, second segment) -> resource id; anything else keeps its first segment
_PATH_ALIASES: Dict[Tuple[str, Optional[str]], str] = {
    ("code", "review"): "code_review",
    ("generate", None): "generate_image",
    ("analyze", None): "analyze_image",
    ("transcribe", None): "transcribe_audio",
    ("synthesize", None): "synthesize_speech",
}


def resource_id_from_url(url: str) -> Optional[str]:
    """Resource id for an /api/ai/<name>[/<action>] URL, None for other paths."""
    match = _AI_PATH.search(urlparse(url).path)
    if not match:
        return None
    first, second = match.group(1), match.group(2)
    return _PATH_ALIASES.get((first, second), first)


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    resource_id: str = ""


class TextResult(_Result):
    kind: Literal["text"] = "text"
    text: str


class ImageResult(_Result):
    kind: Literal["image"] = "image"
    url: Optional[str] = None
    base64_data: Optional[str] = Field(default=None, alias="base64")
    revised_prompt: Optional[str] = Field(default=None, alias="revisedPrompt")


class AudioResult(_Result):
    kind: Literal["audio"] = "audio"
    audio: str
    format: str = "mp3"
    text: Optional[str] = None
    voice: Optional[str] = None

    def audio_bytes(self) -> bytes:
        """Decode a ``data:audio/...;base64,`` URL (or bare base64)."""
        payload = self.audio.split(",", 1)[1] if self.audio.startswith("data:") else self.audio
        return base64.b64decode(payload)


class StructuredResult(_Result):
    kind: Literal["structured"] = "structured"
    data: Dict[str, Any] = Field(default_factory=dict)


ResourceResult = Union[TextResult, ImageResult, AudioResult, StructuredResult]


# resource id -> (variant, field carrying the text / fields that must be present)
RESOURCE_RESULTS: Dict[str, Tuple[Type[_Result], Tuple[str, ...]]] = {
    "summarize": (TextResult, ("summary",)),
    "translate": (TextResult, ("translation",)),
    "simplify": (TextResult, ("simplified",)),
    "analyze_image": (TextResult, ("analysis",)),
    "transcribe_audio": (TextResult, ("transcription",)),
    "generate_image": (ImageResult, ()),
    "synthesize_speech": (AudioResult, ("audio",)),
    "sentiment": (StructuredResult, ("sentiment", "score")),
    "moderate": (StructuredResult, ("flagged",)),
    "extract": (StructuredResult, ()),
    "email": (StructuredResult, ()),
    "product": (StructuredResult, ()),
    "seo": (StructuredResult, ()),
    "code": (StructuredResult, ()),
    "code_review": (StructuredResult, ()),
    "sql": (StructuredResult, ()),
    "regex": (StructuredResult, ()),
    "docs": (StructuredResult, ()),
    "quiz": (StructuredResult, ()),
    "ocr": (StructuredResult, ()),
}


def parse_resource_result(resource_id: Optional[str], body: Any) -> ResourceResult:
    """
    Validate a paid response body for ``resource_id``.

    Unknown ids come back as StructuredResult holding the raw data.

    Raises:
        MalformedResourceResult: body reports failure, or a declared field is missing
    """
    rid = resource_id or ""
    data = body
    if isinstance(body, dict) and "data" in body:
        if body.get("success") is False:
            raise MalformedResourceResult(rid, "response reports success=false")
        data = body["data"]
    if not isinstance(data, dict):
        raise MalformedResourceResult(rid, f"expected a JSON object, got {type(data).__name__}")

    variant, required = RESOURCE_RESULTS.get(rid, (StructuredResult, ()))
    missing = [name for name in required if data.get(name) is None]
    if missing:
        raise MalformedResourceResult(rid, f"missing field(s): {', '.join(missing)}")

    try:
        if variant is TextResult:
            return TextResult.model_validate({**data, "resource_id": rid, "text": str(data[required[0]])})
        if variant is ImageResult:
            result = ImageResult.model_validate({**data, "resource_id": rid})
            if not result.url and not result.base64_data:
                raise MalformedResourceResult(rid, "image result has neither url nor base64")
            return result
        if variant is AudioResult:
            return AudioResult.model_validate({**data, "resource_id": rid})
    except PydanticValidationError as e:
        raise MalformedResourceResult(rid, f"invalid result: {e.error_count()} error(s)") from e
    return StructuredResult(resource_id=rid, data=data)
