"""
PanelForge Beat Sequencer

Turns the text collaborator's loosely-shaped beat output into exactly the
number of beats the audience tier calls for.

The sequencer:
1. Parses raw output into BeatsParsed or BeatsMalformed
2. Coerces every field to a safe default
3. Synthesizes filler beats when short, truncates when long
4. Stamps narrative function, shot type and predecessor summary

It never raises on bad upstream output; a malformed response degrades to an
all-synthetic sequence.
"""

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from panelforge.core.constants import (
    Audience,
    EMOTION_PROGRESSION,
    MAX_CONSECUTIVE_PANEL_TYPE,
    NARRATIVE_ARC_BOUNDS,
    NarrativeFunction,
    PanelType,
    VisualPriority,
    audience_profile,
)
from panelforge.core.logging_config import get_logger

logger = get_logger("agents.beat_sequencer")

DEFAULT_ENVIRONMENT = "story setting"

FILLER_SUMMARIES = {
    NarrativeFunction.ESTABLISH: "The scene is set as the main character appears",
    NarrativeFunction.DEVELOP: "The main character presses on with the journey",
    NarrativeFunction.CLIMAX: "The main character faces the decisive moment",
    NarrativeFunction.RESOLVE: "The main character reflects as the story comes to a close",
}

FILLER_ACTIONS = {
    NarrativeFunction.ESTABLISH: "looks around, taking in the surroundings",
    NarrativeFunction.DEVELOP: "moves forward with purpose",
    NarrativeFunction.CLIMAX: "confronts the challenge head on",
    NarrativeFunction.RESOLVE: "pauses with a calm smile",
}

HIGH_EMOTIONS = {"scared", "angry", "surprised", "determined", "heartbroken", "elated", "terrified", "furious"}
ACTION_WORDS = ("run", "jump", "fight", "chase", "climb", "fly", "leap", "race")

# Alternatives used to break up a run of identical shot types
SHOT_ROTATION = [
    PanelType.MEDIUM_SHOT,
    PanelType.CLOSEUP,
    PanelType.ACTION_SHOT,
    PanelType.WIDE_SHOT,
]

FIELD_ALIASES = {
    "summary": ("summary", "beat", "description", "text"),
    "emotion": ("emotion", "mood"),
    "character_action": ("character_action", "characterAction", "action"),
    "environment": ("environment", "setting", "location"),
    "visual_priority": ("visual_priority", "visualPriority", "focus"),
    "narrative_function": ("narrative_function", "narrativeFunction", "panelPurpose"),
    "dialogue": ("dialogue", "speech"),
}


@dataclass(frozen=True)
class Beat:
    """One story moment; its index is its identity."""
    index: int
    summary: str
    emotion: str
    character_action: str
    environment: str
    visual_priority: VisualPriority
    narrative_function: NarrativeFunction
    dialogue: Optional[str] = None
    has_speech_bubble: bool = False
    previous_beat_summary: Optional[str] = None
    panel_type: PanelType = PanelType.MEDIUM_SHOT
    synthetic: bool = False  # Filler created by the sequencer

    def __post_init__(self):
        if self.index < 0:
            raise ValueError(f"Beat index must be >= 0, got {self.index}")
        for name in ("summary", "emotion", "character_action", "environment"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Beat {self.index}: '{name}' must be a non-empty string")
        if self.has_speech_bubble and not (self.dialogue and self.dialogue.strip()):
            raise ValueError(f"Beat {self.index}: speech bubble without dialogue")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "summary": self.summary,
            "emotion": self.emotion,
            "character_action": self.character_action,
            "environment": self.environment,
            "visual_priority": self.visual_priority.value,
            "narrative_function": self.narrative_function.value,
            "dialogue": self.dialogue,
            "has_speech_bubble": self.has_speech_bubble,
            "previous_beat_summary": self.previous_beat_summary,
            "panel_type": self.panel_type.value,
            "synthetic": self.synthetic,
        }


@dataclass
class BeatsParsed:
    """Raw output that yielded a list of beat-like mappings (possibly empty)."""
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BeatsMalformed:
    """Raw output that could not be read as beats at all."""
    reason: str
    preview: str = ""


RawBeatParse = Union[BeatsParsed, BeatsMalformed]

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_raw_beats(raw: Any) -> RawBeatParse:
    """
    Read the text collaborator's output into a tagged variant.

    Accepts a list, a JSON string (optionally fenced) or a mapping holding
    the list under "beats", "storyBeats" or "story_beats".
    """
    if raw is None:
        return BeatsMalformed(reason="empty output")

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        text = _FENCE_PATTERN.sub("", raw.strip()).strip()
        if not text:
            return BeatsMalformed(reason="empty output")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            return BeatsMalformed(reason=f"invalid JSON: {e.msg}", preview=text[:120])

    if isinstance(raw, dict):
        for key in ("beats", "storyBeats", "story_beats"):
            if isinstance(raw.get(key), list):
                raw = raw[key]
                break
        else:
            return BeatsMalformed(reason="mapping without a beats list", preview=str(list(raw))[:120])

    if not isinstance(raw, list):
        return BeatsMalformed(reason=f"unexpected type {type(raw).__name__}")

    items: List[Dict[str, Any]] = []
    for entry in raw:
        if isinstance(entry, dict):
            items.append(entry)
        elif isinstance(entry, str) and entry.strip():
            items.append({"summary": entry})

    return BeatsParsed(items=items)


def narrative_function_for(index: int, total: int) -> NarrativeFunction:
    """Interpolate the arc role from position; first is establish, last is resolve."""
    if index <= 0:
        return NarrativeFunction.ESTABLISH
    if index >= total - 1:
        return NarrativeFunction.RESOLVE
    ratio = index / total
    for bound, function in NARRATIVE_ARC_BOUNDS:
        if ratio < bound:
            return function
    return NarrativeFunction.RESOLVE


def emotion_for(index: int, total: int) -> str:
    if total <= 1:
        return EMOTION_PROGRESSION[0]
    slot = round(index / (total - 1) * (len(EMOTION_PROGRESSION) - 1))
    return EMOTION_PROGRESSION[slot]


def _pick(item: Dict[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        value = item.get(alias)
        if value not in (None, ""):
            return value
    return None


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value)
    return " ".join(str(value).split())


def _enum_or(enum_cls, value: Any, default):
    text = _clean_text(value).lower().replace(" ", "_")
    for member in enum_cls:
        if member.value == text:
            return member
    return default


class BeatSequencer:
    """
    Normalizes raw beats to the audience panel count.

    Usage:
        sequencer = BeatSequencer()
        beats = sequencer.sequence(parse_raw_beats(raw), Audience.CHILDREN)
    """

    def sequence(self, parsed: RawBeatParse, audience: Union[Audience, str]) -> List[Beat]:
        """
        Build exactly the target number of beats.

        Args:
            parsed: Result of parse_raw_beats
            audience: Audience tier

        Returns:
            List of beats, indices 0..target-1
        """
        profile = audience_profile(audience)
        target = profile.panel_count

        if isinstance(parsed, BeatsMalformed):
            logger.warning(f"Beat output malformed ({parsed.reason}); synthesizing all {target} beats")
            items: List[Dict[str, Any]] = []
        else:
            items = parsed.items

        if len(items) > target:
            logger.info(f"Truncating {len(items)} beats to {target}")
            items = items[:target]
        elif len(items) < target:
            logger.info(f"Synthesizing {target - len(items)} filler beats ({len(items)}/{target} provided)")

        beats: List[Beat] = []
        previous_environment = DEFAULT_ENVIRONMENT
        panel_history: List[PanelType] = []

        for index in range(target):
            if index < len(items):
                beat = self._coerce(items[index], index, target, previous_environment,
                                    profile.max_dialogue_words)
            else:
                beat = self._synthesize(index, target, previous_environment)

            panel_type = self._plan_panel_type(beat, index, target, panel_history)
            panel_history.append(panel_type)

            beat = replace(
                beat,
                panel_type=panel_type,
                previous_beat_summary=beats[-1].summary if beats else None,
            )
            beats.append(beat)
            previous_environment = beat.environment

        return beats

    def _coerce(
        self,
        item: Dict[str, Any],
        index: int,
        total: int,
        previous_environment: str,
        max_dialogue_words: int,
    ) -> Beat:
        interpolated = narrative_function_for(index, total)
        function = _enum_or(NarrativeFunction, _pick(item, "narrative_function"), interpolated)
        # Endpoints of the arc are fixed regardless of what upstream said
        if index == 0 or index == total - 1:
            function = interpolated

        dialogue = _clean_text(_pick(item, "dialogue"))
        if dialogue:
            words = dialogue.split()
            if len(words) > max_dialogue_words:
                dialogue = " ".join(words[:max_dialogue_words]) + "..."

        return Beat(
            index=index,
            summary=_clean_text(_pick(item, "summary")) or FILLER_SUMMARIES[function],
            emotion=_clean_text(_pick(item, "emotion")).lower() or emotion_for(index, total),
            character_action=_clean_text(_pick(item, "character_action")) or FILLER_ACTIONS[function],
            environment=_clean_text(_pick(item, "environment")) or previous_environment,
            visual_priority=_enum_or(VisualPriority, _pick(item, "visual_priority"), VisualPriority.CHARACTER),
            narrative_function=function,
            dialogue=dialogue or None,
            has_speech_bubble=bool(dialogue),
        )

    def _synthesize(self, index: int, total: int, previous_environment: str) -> Beat:
        function = narrative_function_for(index, total)
        return Beat(
            index=index,
            summary=FILLER_SUMMARIES[function],
            emotion=emotion_for(index, total),
            character_action=FILLER_ACTIONS[function],
            environment=previous_environment,
            visual_priority=(
                VisualPriority.ENVIRONMENT if function == NarrativeFunction.ESTABLISH
                else VisualPriority.CHARACTER
            ),
            narrative_function=function,
            synthetic=True,
        )

    def _plan_panel_type(
        self,
        beat: Beat,
        index: int,
        total: int,
        history: List[PanelType],
    ) -> PanelType:
        """Choose a shot type; never more than the allowed run of one type."""
        action = beat.character_action.lower()

        if index == 0:
            choice = PanelType.ESTABLISHING_SHOT
        elif beat.emotion.lower() in HIGH_EMOTIONS:
            choice = PanelType.CLOSEUP
        elif any(word in action for word in ACTION_WORDS):
            choice = PanelType.ACTION_SHOT
        elif beat.narrative_function == NarrativeFunction.CLIMAX:
            choice = PanelType.ACTION_SHOT
        elif beat.has_speech_bubble or beat.visual_priority == VisualPriority.DIALOGUE:
            choice = PanelType.OVER_SHOULDER
        elif beat.visual_priority == VisualPriority.ENVIRONMENT:
            choice = PanelType.WIDE_SHOT
        elif beat.visual_priority == VisualPriority.EMOTION:
            choice = PanelType.CLOSEUP
        elif index == total - 1:
            choice = PanelType.MEDIUM_SHOT
        else:
            choice = SHOT_ROTATION[index % len(SHOT_ROTATION)]

        recent = history[-MAX_CONSECUTIVE_PANEL_TYPE:]
        if len(recent) == MAX_CONSECUTIVE_PANEL_TYPE and all(t == choice for t in recent):
            alternatives = [t for t in SHOT_ROTATION if t != choice]
            choice = alternatives[index % len(alternatives)]
            logger.debug(f"Beat {index}: shot type changed to '{choice.value}' to break a run")

        return choice
