"""
Offline collaborators.

Deterministic stand-ins for the text, vision and render services so a full
job can run without network access (CLI dry runs, tests). Panels are plain
PNG cards drawn with Pillow.
"""

import hashlib
import io
import re
from typing import Any, Dict, List, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from panelforge.consistency.profile import IdentityDescriptor, placeholder_descriptor
from panelforge.core.constants import Audience, DEFAULT_SIZE_HINT
from panelforge.core.logging_config import get_logger

from .api_clients import BeatGenerator, IdentityExtractor, RenderClient, RenderedAsset

logger = get_logger("llm.offline")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_QUOTE = re.compile(r'"([^"]+)"')
_PLACE = re.compile(r"\b(?:in|at|on|inside|near|through)\s+(the\s+[a-z][a-z\s-]{2,30}?)(?=[,.;!?]|\s+(?:and|where|when|with)\b|$)",
                    re.IGNORECASE)

EMOTION_KEYWORDS: Dict[str, Sequence[str]] = {
    "joyful": ("laugh", "smile", "happy", "celebrat", "cheer"),
    "scared": ("afraid", "fear", "scared", "tremb"),
    "surprised": ("sudden", "surprise", "gasp", "shock"),
    "sad": ("cry", "tear", "sad", "lonely"),
    "determined": ("decide", "determin", "must", "resolve"),
    "curious": ("wonder", "curious", "explore", "discover"),
}

ACTION_KEYWORDS: Dict[str, str] = {
    "run": "runs ahead",
    "jump": "jumps into the air",
    "climb": "climbs upward",
    "look": "looks around carefully",
    "find": "finds something important",
    "call": "calls out",
    "walk": "walks forward",
}


def _guess(text: str, table: Dict[str, Sequence[str]]) -> Optional[str]:
    lowered = text.lower()
    for label, keywords in table.items():
        if any(k in lowered for k in keywords):
            return label
    return None


class OfflineBeatGenerator(BeatGenerator):
    """One raw beat per sentence, with keyword-guessed fields."""

    async def generate_beats(self, story: str, audience: Audience) -> Any:
        sentences = [s.strip() for s in _SENTENCE_SPLIT.split(story.strip()) if s.strip()]
        beats: List[Dict[str, Any]] = []
        for sentence in sentences:
            lowered = sentence.lower()
            beat: Dict[str, Any] = {"summary": sentence.rstrip(".!?")}

            emotion = _guess(sentence, EMOTION_KEYWORDS)
            if emotion:
                beat["emotion"] = emotion

            for keyword, action in ACTION_KEYWORDS.items():
                if keyword in lowered:
                    beat["character_action"] = action
                    break

            place = _PLACE.search(sentence)
            if place:
                beat["environment"] = place.group(1).strip().lower()

            quote = _QUOTE.search(sentence)
            if quote:
                beat["dialogue"] = quote.group(1).strip()
                beat["visual_priority"] = "dialogue"

            beats.append(beat)

        logger.debug(f"Offline beat generator produced {len(beats)} beats")
        return {"beats": beats}


class OfflineIdentityExtractor(IdentityExtractor):
    """Returns the placeholder descriptor for any reference image."""

    async def describe_reference(self, image_handle: str) -> IdentityDescriptor:
        return placeholder_descriptor(image_handle)


class PlaceholderRenderClient(RenderClient):
    """Draws a labelled PNG card whose color is derived from the payload."""

    def __init__(self, width: int = 256):
        self.width = width
        self.calls = 0

    def _dimensions(self, size_hint: str):
        try:
            w, h = (int(v) for v in size_hint.lower().split("x"))
        except ValueError:
            w, h = 1, 1
        return self.width, max(1, round(self.width * h / max(w, 1)))

    async def render(
        self,
        payload: str,
        reference_assets: Optional[Sequence[str]] = None,
        size_hint: str = DEFAULT_SIZE_HINT,
    ) -> RenderedAsset:
        self.calls += 1
        digest = hashlib.sha256(payload.encode("utf-8")).digest()
        background = (digest[0], digest[1], digest[2])

        width, height = self._dimensions(size_hint)
        img = Image.new("RGB", (width, height), background)
        draw = ImageDraw.Draw(img)
        draw.rectangle([0, 0, width - 1, height - 1], outline="black", width=4)

        label = payload.split("\n\n")[1][:40] if "\n\n" in payload else payload[:40]
        label = label.encode("ascii", "replace").decode("ascii")
        font = ImageFont.load_default()
        draw.rectangle([6, 6, width - 6, 24], fill="white")
        draw.text((10, 8), label, fill="black", font=font)

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return RenderedAsset(
            data=buffer.getvalue(),
            mime_type="image/png",
            metadata={"references": len(reference_assets or [])},
        )
