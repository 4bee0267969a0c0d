"""
Tests for the panel assembler.

Tests for panelforge/pipelines/panel_assembler.py
"""

import pytest

from panelforge.core.constants import NarrativeFunction, VisualPriority
from panelforge.core.exceptions import PanelAssemblyError
from panelforge.pipelines.batch_scheduler import PanelResult
from panelforge.pipelines.panel_assembler import MIN_NARRATION_WORDS, PanelAssembler


def results_for(count: int):
    return [PanelResult(position=i, asset_handle=f"mem://{i}") for i in range(count)]


class TestNarrate:
    """Tests for PanelAssembler.narrate."""

    def test_opening_panel(self, make_beat):
        narration = PanelAssembler().narrate(make_beat(0), total=10)

        assert narration.startswith("It all begins here. Mia explores part 0")

    def test_closing_panel(self, make_beat):
        narration = PanelAssembler().narrate(make_beat(9), total=10)

        assert narration.startswith("And so the story draws to a close. Mia explores part 9")

    def test_climax_is_exclaimed(self, make_beat):
        beat = make_beat(7, narrative_function=NarrativeFunction.CLIMAX)

        narration = PanelAssembler().narrate(beat, total=10)

        assert narration.split(" The hero ")[0].endswith("!")

    def test_short_narration_padded(self, make_beat):
        beat = make_beat(3, summary="Rain", character_action="waits", emotion="calm",
                         environment="porch", visual_priority=VisualPriority.ENVIRONMENT)

        narration = PanelAssembler().narrate(beat, total=10)

        assert len(narration.split()) >= MIN_NARRATION_WORDS
        assert narration.endswith("full of small details.")

    def test_deterministic(self, make_beat):
        assembler = PanelAssembler()

        assert assembler.narrate(make_beat(4), 10) == assembler.narrate(make_beat(4), 10)


class TestAssemble:
    """Tests for PanelAssembler.assemble."""

    @pytest.mark.parametrize("count,per_page,pages", [(10, 2, 5), (15, 3, 5), (24, 4, 6), (5, 2, 3)])
    def test_pagination(self, make_beat, count, per_page, pages):
        beats = [make_beat(i) for i in range(count)]

        result = PanelAssembler().assemble(beats, results_for(count), per_page)

        assert len(result) == pages
        assert [p.page_number for p in result] == list(range(1, pages + 1))
        flat = [panel.position for page in result for panel in page.panels]
        assert flat == list(range(count))
        assert all(len(p.panels) <= per_page for p in result)

    def test_dialogue_carried(self, make_beat):
        beats = [make_beat(0, dialogue="Look!", has_speech_bubble=True), make_beat(1)]

        pages = PanelAssembler().assemble(beats, results_for(2), 2)

        assert pages[0].panels[0].dialogue == "Look!"
        assert pages[0].panels[0].has_speech_bubble
        assert pages[0].panels[1].emotion == "curious"
        assert pages[0].panels[1].dialogue is None
        assert pages[0].panels[0].asset_handle == "mem://0"

    def test_length_mismatch(self, make_beat):
        with pytest.raises(PanelAssemblyError):
            PanelAssembler().assemble([make_beat(i) for i in range(3)], results_for(2), 2)

    def test_misaligned_positions(self, make_beat):
        results = list(reversed(results_for(2)))

        with pytest.raises(PanelAssemblyError):
            PanelAssembler().assemble([make_beat(0), make_beat(1)], results, 2)

    def test_to_dict(self, make_beat):
        pages = PanelAssembler().assemble([make_beat(0)], results_for(1), 2)

        data = pages[0].to_dict()
        assert data["page_number"] == 1
        assert data["panels"][0]["panel_type"] == "medium_shot"


class TestNarrateResults:
    """Tests for PanelAssembler.narrate_results."""

    def test_copies_narration(self, make_beat):
        beats = [make_beat(i) for i in range(3)]

        results = PanelAssembler().narrate_results(beats, results_for(3))

        assert all(r.narration for r in results)
        assert results[0].narration.startswith("It all begins here.")
