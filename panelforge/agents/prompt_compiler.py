"""
PanelForge Prompt Compiler

Builds the bounded, deterministic render payload for one panel.

Sections, highest priority first:
1. Identity and reference linkage (never cut below its floor)
2. Scene action and emotion, with continuity from the prior beat
3. Environment and lighting
4. Style boilerplate
5. Dialogue

When the assembled text exceeds the length limit, the compiler first strips
filler words and verbose phrasing, then drops sections from the bottom of the
list, then truncates what is left at word boundaries.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from panelforge.agents.beat_sequencer import Beat
from panelforge.consistency.profile import ConsistencyProfile
from panelforge.core.constants import DEFAULT_SIZE_HINT
from panelforge.core.exceptions import ConsistencyPrerequisiteMissingError
from panelforge.core.logging_config import get_logger

logger = get_logger("agents.prompt_compiler")

SECTION_SEPARATOR = "\n\n"
MIN_SCENE_LENGTH = 60


class PromptSection(Enum):
    """Prompt sections in priority order."""
    IDENTITY = 1
    SCENE = 2
    ENVIRONMENT = 3
    STYLE = 4
    DIALOGUE = 5


# Lowest priority first
DROP_ORDER = [PromptSection.DIALOGUE, PromptSection.STYLE, PromptSection.ENVIRONMENT]

FILLER_WORDS = (
    "actually", "basically", "essentially", "literally", "obviously",
    "certainly", "definitely", "really", "truly", "quite", "rather",
    "somewhat", "perhaps", "maybe", "very", "extremely", "incredibly",
)

VERBOSE_PHRASES = (
    r"in this scene,?\s+we see\s+",
    r"the character should be shown\s+",
    r"it is important that\s+",
    r"make sure to include\s+",
    r"please ensure\s+",
    r"as you can see,?\s+",
    r"what we're looking for is\s+",
    r"in order to\s+",
)

_FILLER_PATTERN = re.compile(r"\b(?:" + "|".join(FILLER_WORDS) + r")\b\s*", re.IGNORECASE)
_VERBOSE_PATTERN = re.compile("|".join(VERBOSE_PHRASES), re.IGNORECASE)
_SPACES = re.compile(r"[ \t]{2,}")


def compress_phrases(text: str) -> str:
    """Remove filler words and verbose phrasing; meaning-preserving."""
    text = _VERBOSE_PATTERN.sub("", text)
    text = _FILLER_PATTERN.sub("", text)
    return _SPACES.sub(" ", text).strip()


def truncate_words(text: str, limit: int) -> str:
    """Cut text to at most limit characters, preferring a word boundary."""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    boundary = cut.rfind(" ")
    if boundary >= limit * 0.6:
        cut = cut[:boundary]
    return cut.rstrip(" ,;:-")


@dataclass
class CompressionReport:
    """What the compiler did to fit the length limit."""
    original_length: int
    final_length: int
    phrase_compressed: bool = False
    dropped_sections: List[str] = field(default_factory=list)
    truncated_sections: List[str] = field(default_factory=list)
    identity_length: int = 0

    @property
    def compressed(self) -> bool:
        return self.final_length < self.original_length

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_length": self.original_length,
            "final_length": self.final_length,
            "phrase_compressed": self.phrase_compressed,
            "dropped_sections": list(self.dropped_sections),
            "truncated_sections": list(self.truncated_sections),
            "identity_length": self.identity_length,
        }


@dataclass(frozen=True)
class CompiledPrompt:
    """Render payload for one panel."""
    position: int
    total: int
    text: str
    fingerprint: str
    reference_assets: Tuple[str, ...] = ()
    size_hint: str = DEFAULT_SIZE_HINT
    report: Optional[CompressionReport] = field(default=None, compare=False)

    def __len__(self) -> int:
        return len(self.text)


class PromptCompiler:
    """
    Compiles beats into bounded render payloads.

    Identical inputs always produce byte-identical text.
    """

    def __init__(
        self,
        max_length: int = 4000,
        identity_min_length: int = 200,
        art_style: str = "vibrant comic book illustration",
        size_hint: str = DEFAULT_SIZE_HINT,
    ):
        if identity_min_length >= max_length:
            raise ValueError("identity_min_length must be below max_length")
        self.max_length = max_length
        self.identity_min_length = identity_min_length
        self.art_style = art_style
        self.size_hint = size_hint

    @classmethod
    def from_config(cls, prompt_config, size_hint: str = DEFAULT_SIZE_HINT) -> "PromptCompiler":
        return cls(
            max_length=prompt_config.max_length,
            identity_min_length=prompt_config.identity_min_length,
            art_style=prompt_config.art_style,
            size_hint=size_hint,
        )

    def with_style(self, art_style: Optional[str]) -> "PromptCompiler":
        """Copy of this compiler using art_style; blank keeps the current style."""
        if not art_style or not art_style.strip() or art_style.strip() == self.art_style:
            return self
        return PromptCompiler(
            max_length=self.max_length,
            identity_min_length=self.identity_min_length,
            art_style=art_style.strip(),
            size_hint=self.size_hint,
        )

    def compile(
        self,
        beat: Beat,
        profile: Optional[ConsistencyProfile],
        position: int,
        total: int,
        previous_reference: Optional[str] = None,
    ) -> CompiledPrompt:
        """
        Compile one panel payload.

        Args:
            beat: Beat for this panel
            profile: Job consistency profile
            position: Panel position (0-based)
            total: Number of panels in the job
            previous_reference: Asset handle of the preceding panel, if rendered

        Raises:
            ConsistencyPrerequisiteMissingError: If profile is None
        """
        if profile is None:
            raise ConsistencyPrerequisiteMissingError(position)

        sections = self._build_sections(beat, profile, position, total, previous_reference)
        text, report = self._fit(sections)

        if report.compressed:
            logger.debug(
                f"Panel {position}: prompt {report.original_length} -> {report.final_length} chars, "
                f"dropped={report.dropped_sections}, truncated={report.truncated_sections}"
            )

        references = tuple(
            ref for ref in (profile.reference_asset_id, previous_reference) if ref
        )
        return CompiledPrompt(
            position=position,
            total=total,
            text=text,
            fingerprint=profile.fingerprint,
            reference_assets=references,
            size_hint=self.size_hint,
            report=report,
        )

    def _build_sections(
        self,
        beat: Beat,
        profile: ConsistencyProfile,
        position: int,
        total: int,
        previous_reference: Optional[str],
    ) -> Dict[PromptSection, str]:
        identity = (
            f"CHARACTER [{profile.fingerprint}]: {profile.identity_text}. "
            "Keep this character identical in every panel."
        )
        if profile.reference_asset_id:
            identity += f" Match reference image {profile.reference_asset_id}."
        if previous_reference:
            identity += f" Stay continuous with previous panel {previous_reference}."

        scene = (
            f"PANEL {position + 1} of {total} ({beat.panel_type.value.replace('_', ' ')}, "
            f"{beat.narrative_function.value}): {beat.summary}. "
            f"The character {beat.character_action}, feeling {beat.emotion}. "
            f"Focus on {beat.visual_priority.value}."
        )
        if beat.previous_beat_summary:
            scene += f" Continues from: {beat.previous_beat_summary}."

        sections = {
            PromptSection.IDENTITY: identity,
            PromptSection.SCENE: scene,
            PromptSection.ENVIRONMENT: f"ENVIRONMENT: {profile.environment.render()}.",
            PromptSection.STYLE: (
                f"STYLE: {self.art_style}, consistent line work and coloring across panels, "
                "clean composition, no stray text or watermarks."
            ),
        }
        if beat.has_speech_bubble and beat.dialogue:
            sections[PromptSection.DIALOGUE] = f'DIALOGUE: one speech bubble reading "{beat.dialogue}".'
        return sections

    @staticmethod
    def _join(sections: Dict[PromptSection, str]) -> str:
        return SECTION_SEPARATOR.join(
            sections[s] for s in sorted(sections, key=lambda s: s.value) if sections[s]
        )

    def _fit(self, sections: Dict[PromptSection, str]) -> Tuple[str, CompressionReport]:
        text = self._join(sections)
        report = CompressionReport(
            original_length=len(text),
            final_length=len(text),
            identity_length=len(sections[PromptSection.IDENTITY]),
        )
        if len(text) <= self.max_length:
            return text, report

        # 1. Phrase-level compression outside the identity section
        for section in list(sections):
            if section != PromptSection.IDENTITY:
                sections[section] = compress_phrases(sections[section])
        report.phrase_compressed = True
        text = self._join(sections)

        # 2. Drop low-priority sections
        for section in DROP_ORDER:
            if len(text) <= self.max_length:
                break
            if section in sections:
                del sections[section]
                report.dropped_sections.append(section.name.lower())
                text = self._join(sections)

        # 3. Truncate scene, then identity down to its floor
        if len(text) > self.max_length:
            identity = sections[PromptSection.IDENTITY]
            floor = min(len(identity), self.identity_min_length)
            separator = len(SECTION_SEPARATOR)

            scene_budget = self.max_length - len(identity) - separator
            if scene_budget < MIN_SCENE_LENGTH:
                identity_budget = max(floor, self.max_length - separator - MIN_SCENE_LENGTH)
                identity_budget = min(identity_budget, self.max_length)
                if identity_budget < len(identity):
                    identity = truncate_words(identity, identity_budget)
                    if len(identity) < floor:
                        identity = sections[PromptSection.IDENTITY][:floor]
                    sections[PromptSection.IDENTITY] = identity
                    report.truncated_sections.append("identity")
                scene_budget = self.max_length - len(identity) - separator

            scene = sections.get(PromptSection.SCENE, "")
            if scene_budget <= 0:
                sections.pop(PromptSection.SCENE, None)
                report.dropped_sections.append("scene")
            elif len(scene) > scene_budget:
                sections[PromptSection.SCENE] = truncate_words(scene, scene_budget)
                report.truncated_sections.append("scene")

            text = self._join(sections)

        report.final_length = len(text)
        report.identity_length = len(sections[PromptSection.IDENTITY])
        return text, report
