"""
PanelForge Constants

Enumerations and fixed tables used throughout PanelForge.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

# =============================================================================
# AUDIENCE TIERS
# =============================================================================

class Audience(Enum):
    """Target audience tier; fixes panel count and page layout."""
    CHILDREN = "children"
    YOUNG_ADULTS = "young_adults"
    ADULTS = "adults"

    @classmethod
    def parse(cls, value) -> "Audience":
        if isinstance(value, Audience):
            return value
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == normalized or member.name.lower() == normalized:
                return member
        raise ValueError(f"Unknown audience: {value!r}")


@dataclass(frozen=True)
class AudienceProfile:
    """Layout and content policy for one audience tier."""
    panel_count: int
    panels_per_page: int
    complexity: str
    speech_bubble_ratio: float  # Target share of panels carrying dialogue
    max_dialogue_words: int


AUDIENCE_PROFILES: Dict[Audience, AudienceProfile] = {
    Audience.CHILDREN: AudienceProfile(
        panel_count=10, panels_per_page=2, complexity="simple",
        speech_bubble_ratio=0.3, max_dialogue_words=12,
    ),
    Audience.YOUNG_ADULTS: AudienceProfile(
        panel_count=15, panels_per_page=3, complexity="moderate",
        speech_bubble_ratio=0.4, max_dialogue_words=20,
    ),
    Audience.ADULTS: AudienceProfile(
        panel_count=24, panels_per_page=4, complexity="complex",
        speech_bubble_ratio=0.45, max_dialogue_words=30,
    ),
}


def audience_profile(audience) -> AudienceProfile:
    return AUDIENCE_PROFILES[Audience.parse(audience)]


MIN_STORY_LENGTH = 50

# =============================================================================
# BEAT VOCABULARY
# =============================================================================

class NarrativeFunction(Enum):
    """Role a beat plays in the arc."""
    ESTABLISH = "establish"
    DEVELOP = "develop"
    CLIMAX = "climax"
    RESOLVE = "resolve"


class VisualPriority(Enum):
    """What the panel composition should emphasize."""
    CHARACTER = "character"
    ACTION = "action"
    ENVIRONMENT = "environment"
    EMOTION = "emotion"
    DIALOGUE = "dialogue"


class PanelType(Enum):
    """Shot type planned for a panel."""
    ESTABLISHING_SHOT = "establishing_shot"   # Wide, setting first
    WIDE_SHOT = "wide_shot"
    MEDIUM_SHOT = "medium_shot"
    CLOSEUP = "closeup"
    ACTION_SHOT = "action_shot"
    OVER_SHOULDER = "over_shoulder"           # Conversations


# Upper bounds of the position ratio for each narrative function
NARRATIVE_ARC_BOUNDS: List[Tuple[float, NarrativeFunction]] = [
    (0.15, NarrativeFunction.ESTABLISH),
    (0.70, NarrativeFunction.DEVELOP),
    (0.85, NarrativeFunction.CLIMAX),
    (1.01, NarrativeFunction.RESOLVE),
]

# Emotion curve used when a beat is synthesized, indexed by arc position
EMOTION_PROGRESSION: List[str] = [
    "curious",
    "hopeful",
    "determined",
    "anxious",
    "tense",
    "intense",
    "relieved",
    "joyful",
]

MAX_CONSECUTIVE_PANEL_TYPE = 2

# =============================================================================
# QUALITY GRADING
# =============================================================================

GRADE_THRESHOLDS: List[Tuple[int, str]] = [
    (95, "A+"),
    (90, "A"),
    (85, "A-"),
    (80, "B+"),
    (75, "B"),
    (70, "B-"),
]
FLOOR_GRADE = "C+"

DEFAULT_QUALITY_WEIGHTS: Dict[str, float] = {
    "character_consistency": 0.22,
    "environment_coherence": 0.13,
    "narrative_coherence": 0.20,
    "visual_quality": 0.18,
    "technical_execution": 0.12,
    "audience_alignment": 0.10,
    "dialogue_effectiveness": 0.05,
}

DEGRADED_OVERALL_SCORE = 75
LEARNING_SCORE_THRESHOLD = 80

# =============================================================================
# DISPATCH
# =============================================================================

class EndpointKind(Enum):
    """External operations guarded by their own breaker."""
    PANEL_RENDER = "panel_render"
    BEAT_GENERATION = "beat_generation"
    IDENTITY_EXTRACTION = "identity_extraction"


DEFAULT_SIZE_HINT = "1024x1024"
