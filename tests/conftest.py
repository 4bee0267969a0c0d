"""
Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import httpx
import pytest

from panelforge.agents.beat_sequencer import Beat
from panelforge.consistency.profile import ConsistencyProfile, EnvironmentProfile, IdentityDescriptor
from panelforge.core.constants import NarrativeFunction, PanelType, VisualPriority
from panelforge.llm.api_clients import RenderClient, RenderedAsset


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


class ScriptedRenderClient(RenderClient):
    """
    Render client driven by a script of outcomes.

    Each entry is an exception instance to raise or None for success; once
    the script runs out every call succeeds.
    """

    def __init__(self, script: Optional[Sequence[Optional[BaseException]]] = None,
                 latency: Optional[Callable[[str], float]] = None):
        self.script = list(script or [])
        self.latency = latency
        self.calls: List[str] = []

    async def render(self, payload, reference_assets=None, size_hint="1024x1024") -> RenderedAsset:
        self.calls.append(payload)
        outcome = self.script.pop(0) if self.script else None
        if self.latency:
            await asyncio.sleep(self.latency(payload))
        if outcome is not None:
            raise outcome
        return RenderedAsset(data=f"image:{len(self.calls)}".encode(), mime_type="image/png")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    """Fail any test that reaches a real network transport."""
    async def refuse(self, request):
        raise RuntimeError(f"Network access in tests: {request.url}")

    monkeypatch.setattr(httpx.AsyncHTTPTransport, "handle_async_request", refuse)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock) -> RecordingSleep:
    return RecordingSleep(fake_clock)


@pytest.fixture
def scripted_client_factory():
    return ScriptedRenderClient


@pytest.fixture
def sample_story() -> str:
    """A children's story of roughly 400 characters."""
    return (
        "Mia wakes at dawn in the little lighthouse by the sea. "
        "She finds a glowing shell on the rocky beach. "
        "\"Where did you come from?\" she asks the shell. "
        "A curious seagull follows her along the rocky beach. "
        "Suddenly a storm rolls in over the harbor. "
        "Mia runs back to the lighthouse and lights the great lamp. "
        "The lost fishing boat sees the light and turns home. "
        "Everyone in the harbor cheers and Mia smiles."
    )


@pytest.fixture
def character_description() -> str:
    return "Mia, a nine-year-old girl with curly red hair, a yellow raincoat and green boots"


@pytest.fixture
def sample_profile() -> ConsistencyProfile:
    """Profile with a full descriptor and a reference image."""
    return ConsistencyProfile(
        identity=IdentityDescriptor(
            summary="Mia, a nine-year-old girl with curly red hair",
            features=("freckles", "gap-toothed smile"),
            palette=("yellow", "green"),
            distinctive_marks=("star-shaped hair clip",),
        ),
        environment=EnvironmentProfile(
            location_name="the little lighthouse by the sea",
            key_features=("rocky beach", "harbor"),
            lighting_mood="bright and cheerful",
            time_of_day="morning",
            color_palette=("bright blue", "sunny yellow"),
        ),
        reference_asset_id="ref-001",
    )


@pytest.fixture
def make_beat() -> Callable[..., Beat]:
    """Factory for valid beats with overridable fields."""
    def factory(index: int = 0, **overrides) -> Beat:
        fields: Dict = {
            "index": index,
            "summary": f"Mia explores part {index} of the beach",
            "emotion": "curious",
            "character_action": "walks along the shore",
            "environment": "rocky beach",
            "visual_priority": VisualPriority.CHARACTER,
            "narrative_function": NarrativeFunction.DEVELOP,
            "panel_type": PanelType.MEDIUM_SHOT,
        }
        fields.update(overrides)
        return Beat(**fields)
    return factory
