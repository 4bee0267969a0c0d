"""
PanelForge API Clients

Collaborator interfaces for the external services a comic job depends on,
plus httpx-backed clients for the render service and an OpenAI-compatible
chat endpoint used for beat generation.

Every client raises UpstreamError subclasses; callers never see raw httpx
exceptions.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import httpx

from panelforge.consistency.profile import IdentityDescriptor
from panelforge.core.constants import Audience, DEFAULT_SIZE_HINT, audience_profile
from panelforge.core.exceptions import (
    UpstreamAuthError,
    UpstreamContentPolicyError,
    UpstreamError,
    UpstreamNetworkError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from panelforge.core.logging_config import get_logger

logger = get_logger("llm.api_clients")

CONTENT_POLICY_MARKERS = (
    "content policy",
    "content_policy",
    "safety",
    "moderation",
    "inappropriate",
    "blocked",
)


# ============================================================================
#  COLLABORATOR INTERFACES
# ============================================================================

@dataclass
class RenderedAsset:
    """Bytes returned by the render service."""
    data: bytes
    mime_type: str = "image/png"
    metadata: Dict[str, Any] = field(default_factory=dict)


class RenderClient(ABC):
    """Turns a compiled prompt into image bytes."""

    @abstractmethod
    async def render(
        self,
        payload: str,
        reference_assets: Optional[Sequence[str]] = None,
        size_hint: str = DEFAULT_SIZE_HINT,
    ) -> RenderedAsset:
        pass


class BeatGenerator(ABC):
    """Turns a story into raw, loosely-shaped beat output."""

    @abstractmethod
    async def generate_beats(self, story: str, audience: Audience) -> Any:
        pass


class IdentityExtractor(ABC):
    """Describes the character in a reference image."""

    @abstractmethod
    async def describe_reference(self, image_handle: str) -> IdentityDescriptor:
        pass


# ============================================================================
#  ERROR CLASSIFICATION
# ============================================================================

def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_http_error(
    status_code: int,
    body: str = "",
    retry_after: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> UpstreamError:
    """
    Map an HTTP failure to an UpstreamError subclass.

    401/403 auth, 429 rate limit, other 4xx mentioning content safety is a
    content-policy rejection, 5xx unavailable, anything else network.
    """
    snippet = " ".join(body.split())[:200]
    message = f"HTTP {status_code}: {snippet}" if snippet else f"HTTP {status_code}"

    if status_code in (401, 403):
        return UpstreamAuthError(message, status_code=status_code, endpoint=endpoint)
    if status_code == 429:
        return UpstreamRateLimitError(
            message,
            status_code=status_code,
            retry_after=_parse_retry_after(retry_after),
            endpoint=endpoint,
        )
    if 400 <= status_code < 500 and any(m in body.lower() for m in CONTENT_POLICY_MARKERS):
        return UpstreamContentPolicyError(message, status_code=status_code, endpoint=endpoint)
    if status_code >= 500:
        return UpstreamUnavailableError(message, status_code=status_code, endpoint=endpoint)
    return UpstreamNetworkError(message, status_code=status_code, endpoint=endpoint)


def classify_transport_error(error: httpx.HTTPError, endpoint: Optional[str] = None) -> UpstreamError:
    if isinstance(error, httpx.TimeoutException):
        return UpstreamTimeoutError(f"Request timed out: {error}", endpoint=endpoint)
    return UpstreamNetworkError(f"Transport error: {error}", endpoint=endpoint)


# ============================================================================
#  BASE HTTP CLIENT
# ============================================================================

class BaseHttpClient:
    """Shared httpx.AsyncClient handling for service clients."""

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ValueError(f"{self.__class__.__name__} requires a base URL")
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, endpoint=path)

        if response.status_code >= 400:
            raise classify_http_error(
                response.status_code,
                response.text,
                response.headers.get("Retry-After"),
                endpoint=path,
            )
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False


# ============================================================================
#  RENDER CLIENT
# ============================================================================

class HttpRenderClient(BaseHttpClient, RenderClient):
    """
    Render service client.

    POSTs {"prompt", "reference_images", "size"} and accepts either raw image
    bytes or JSON carrying "image_base64" and "mime_type".
    """

    RENDER_PATH = "/render"

    async def render(
        self,
        payload: str,
        reference_assets: Optional[Sequence[str]] = None,
        size_hint: str = DEFAULT_SIZE_HINT,
    ) -> RenderedAsset:
        response = await self._post(self.RENDER_PATH, {
            "prompt": payload,
            "reference_images": list(reference_assets or []),
            "size": size_hint,
        })

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        if content_type.startswith("image/"):
            return RenderedAsset(data=response.content, mime_type=content_type)

        try:
            body = response.json()
            data = base64.b64decode(body["image_base64"])
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamNetworkError(
                f"Unreadable render response: {e}",
                status_code=response.status_code,
                endpoint=self.RENDER_PATH,
            )
        return RenderedAsset(
            data=data,
            mime_type=body.get("mime_type", "image/png"),
            metadata={k: v for k, v in body.items() if k not in ("image_base64", "mime_type")},
        )


# ============================================================================
#  BEAT GENERATOR (OpenAI-compatible chat completions)
# ============================================================================

BEAT_SYSTEM_PROMPT = """You split stories into comic panels.

Return JSON: {"beats": [...]} with exactly %(count)d entries, each having
summary, emotion, character_action, environment, visual_priority
(character|action|environment|emotion|dialogue), narrative_function
(establish|develop|climax|resolve) and optional dialogue.
Audience: %(audience)s."""


class HttpBeatGenerator(BaseHttpClient, BeatGenerator):
    """Beat generation through a chat-completions endpoint."""

    COMPLETIONS_PATH = "/chat/completions"

    def __init__(self, base_url: str, model: str, api_token: Optional[str] = None,
                 timeout: float = 120.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(base_url, api_token, timeout, transport)
        self.model = model

    async def generate_beats(self, story: str, audience: Audience) -> Any:
        system_prompt = BEAT_SYSTEM_PROMPT % {
            "count": audience_profile(audience).panel_count,
            "audience": audience.value,
        }
        response = await self._post(self.COMPLETIONS_PATH, {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": story},
            ],
            "temperature": 0.7,
        })
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Beat response had no message content")
            return None
        # Parsing is left to the sequencer, which tolerates malformed output
        return content
