"""
PanelForge service clients.
"""

from .api_clients import (
    RenderedAsset,
    RenderClient,
    BeatGenerator,
    IdentityExtractor,
    HttpRenderClient,
    HttpBeatGenerator,
    classify_http_error,
)
from .offline import OfflineBeatGenerator, OfflineIdentityExtractor, PlaceholderRenderClient

__all__ = [
    'RenderedAsset',
    'RenderClient',
    'BeatGenerator',
    'IdentityExtractor',
    'HttpRenderClient',
    'HttpBeatGenerator',
    'classify_http_error',
    'OfflineBeatGenerator',
    'OfflineIdentityExtractor',
    'PlaceholderRenderClient',
]
