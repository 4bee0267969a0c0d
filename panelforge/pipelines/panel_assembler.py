"""
PanelForge Panel Assembler

Joins beats with rendered panels, writes narration and lays panels out into
pages. Output is deterministic for a given input.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from panelforge.agents.beat_sequencer import Beat
from panelforge.core.constants import NarrativeFunction, VisualPriority
from panelforge.core.exceptions import PanelAssemblyError
from panelforge.core.logging_config import get_logger

from .batch_scheduler import PanelResult

logger = get_logger("pipelines.panel_assembler")

MIN_NARRATION_WORDS = 15

FILLER_CLAUSES = {
    VisualPriority.CHARACTER: "Every detail of their face shows what this moment means.",
    VisualPriority.ACTION: "Everything happens in a rush of movement and energy.",
    VisualPriority.ENVIRONMENT: "All around them the world stretches out, full of small details.",
    VisualPriority.EMOTION: "The feeling fills the whole scene and lingers for a moment.",
    VisualPriority.DIALOGUE: "The words hang in the air as everyone waits to see what happens next.",
}


@dataclass
class AssembledPanel:
    """A rendered panel with its beat context and narration."""
    position: int
    asset_handle: str
    narration: str
    emotion: str = ""
    has_speech_bubble: bool = False
    dialogue: Optional[str] = None
    panel_type: str = ""
    narrative_function: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "asset_handle": self.asset_handle,
            "narration": self.narration,
            "emotion": self.emotion,
            "has_speech_bubble": self.has_speech_bubble,
            "dialogue": self.dialogue,
            "panel_type": self.panel_type,
            "narrative_function": self.narrative_function,
        }


@dataclass
class Page:
    """One page of the finished comic."""
    page_number: int
    panels: List[AssembledPanel] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "panels": [p.to_dict() for p in self.panels],
        }


def _sentence(text: str) -> str:
    text = text.strip().rstrip(".!?")
    if not text:
        return ""
    return text[0].upper() + text[1:]


class PanelAssembler:
    """Builds narration and pages from beats and panel results."""

    def narrate(self, beat: Beat, total: int) -> str:
        """Compose narration for one beat."""
        summary = _sentence(beat.summary)
        if beat.index == 0:
            summary = f"It all begins here. {summary}"
        elif beat.index == total - 1:
            summary = f"And so the story draws to a close. {summary}"

        closing = "!" if beat.narrative_function == NarrativeFunction.CLIMAX else "."
        clauses = [
            f"{summary}{closing}",
            f"The hero {beat.character_action.strip().rstrip('.!?')}{closing}",
            f"They feel {beat.emotion.strip().rstrip('.!?')}.",
            f"The scene unfolds in {beat.environment.strip().rstrip('.!?')}.",
        ]
        narration = " ".join(clauses)

        if len(narration.split()) < MIN_NARRATION_WORDS:
            narration = f"{narration} {FILLER_CLAUSES[beat.visual_priority]}"
        return narration

    def assemble(
        self,
        beats: Sequence[Beat],
        results: Sequence[PanelResult],
        panels_per_page: int,
    ) -> List[Page]:
        """
        Attach narration and paginate.

        Raises:
            PanelAssemblyError: When beats and results do not line up
        """
        if len(beats) != len(results):
            raise PanelAssemblyError(len(beats), len(results))
        if panels_per_page < 1:
            raise ValueError("panels_per_page must be at least 1")

        total = len(beats)
        panels: List[AssembledPanel] = []
        for beat, result in zip(beats, results):
            if result is None or result.position != beat.index:
                raise PanelAssemblyError(len(beats), len(results))
            narration = self.narrate(beat, total)
            panels.append(AssembledPanel(
                position=beat.index,
                asset_handle=result.asset_handle,
                narration=narration,
                emotion=beat.emotion,
                has_speech_bubble=beat.has_speech_bubble,
                dialogue=beat.dialogue if beat.has_speech_bubble else None,
                panel_type=beat.panel_type.value,
                narrative_function=beat.narrative_function.value,
            ))

        pages = [
            Page(page_number=i // panels_per_page + 1, panels=panels[i:i + panels_per_page])
            for i in range(0, total, panels_per_page)
        ]
        logger.info(f"Assembled {total} panels into {len(pages)} pages")
        return pages

    def narrate_results(self, beats: Sequence[Beat], results: Sequence[PanelResult]) -> List[PanelResult]:
        """Copy narration onto panel results."""
        total = len(beats)
        return [replace(r, narration=self.narrate(b, total)) for b, r in zip(beats, results)]
