"""
PanelForge Consistency Profile

The identity and environment constraints every panel prompt of a job carries.

A profile is built once per job, before the first render request, from the
reference image descriptor (or the caller's character description) and the
sequenced beats. It is frozen and shared read-only by all concurrent panel
requests.
"""

import hashlib
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from panelforge.core.constants import Audience
from panelforge.core.exceptions import InputValidationError
from panelforge.core.logging_config import get_logger

logger = get_logger("consistency.profile")

MAX_KEY_FEATURES = 5
MAX_PALETTE_COLORS = 5
RECURRING_WORD_MIN_LENGTH = 5
RECURRING_SHARE = 0.3  # Fraction of beats a word must appear in to recur

TIME_OF_DAY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "morning": ("wake", "sunrise", "breakfast", "dawn"),
    "afternoon": ("lunch", "midday", "noon"),
    "evening": ("sunset", "dinner", "dusk"),
    "night": ("sleep", "stars", "moon", "midnight"),
}

AUDIENCE_PALETTES: Dict[Audience, Tuple[str, ...]] = {
    Audience.CHILDREN: ("bright blue", "sunny yellow", "grass green", "warm orange"),
    Audience.YOUNG_ADULTS: ("deep blue", "forest green", "sunset orange", "cool gray"),
    Audience.ADULTS: ("muted blue", "earth brown", "charcoal gray", "deep red"),
}

AUDIENCE_LIGHTING: Dict[Audience, str] = {
    Audience.CHILDREN: "bright and cheerful",
    Audience.YOUNG_ADULTS: "dynamic and atmospheric",
    Audience.ADULTS: "sophisticated and nuanced",
}


@dataclass(frozen=True)
class IdentityDescriptor:
    """Textual description of the recurring character."""
    summary: str
    features: Tuple[str, ...] = ()
    palette: Tuple[str, ...] = ()
    distinctive_marks: Tuple[str, ...] = ()
    is_placeholder: bool = False

    def render(self) -> str:
        """Flatten to the text used inside prompts; never empty."""
        parts = [self.summary.strip()]
        if self.features:
            parts.append("Features: " + ", ".join(self.features))
        if self.palette:
            parts.append("Colors: " + ", ".join(self.palette))
        if self.distinctive_marks:
            parts.append("Distinctive: " + ", ".join(self.distinctive_marks))
        return ". ".join(p for p in parts if p)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "features": list(self.features),
            "palette": list(self.palette),
            "distinctive_marks": list(self.distinctive_marks),
            "is_placeholder": self.is_placeholder,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityDescriptor":
        return cls(
            summary=str(data.get("summary", "")).strip(),
            features=tuple(data.get("features", ()) or ()),
            palette=tuple(data.get("palette", ()) or ()),
            distinctive_marks=tuple(data.get("distinctive_marks", ()) or ()),
            is_placeholder=bool(data.get("is_placeholder", False)),
        )

    @classmethod
    def from_text(cls, text: str) -> "IdentityDescriptor":
        return cls(summary=" ".join(text.split()))


@dataclass(frozen=True)
class EnvironmentProfile:
    """Setting constraints repeated in every panel."""
    location_name: str
    key_features: Tuple[str, ...] = ()
    lighting_mood: str = "balanced"
    time_of_day: str = "afternoon"
    color_palette: Tuple[str, ...] = ()
    recurring_objects: Tuple[str, ...] = ()

    def render(self) -> str:
        parts = [f"Setting: {self.location_name}"]
        if self.key_features:
            parts.append("Key features: " + ", ".join(self.key_features))
        parts.append(f"Lighting: {self.lighting_mood}, {self.time_of_day}")
        if self.color_palette:
            parts.append("Palette: " + ", ".join(self.color_palette))
        if self.recurring_objects:
            parts.append("Recurring objects: " + ", ".join(self.recurring_objects))
        return ". ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_name": self.location_name,
            "key_features": list(self.key_features),
            "lighting_mood": self.lighting_mood,
            "time_of_day": self.time_of_day,
            "color_palette": list(self.color_palette),
            "recurring_objects": list(self.recurring_objects),
        }


@dataclass(frozen=True)
class ConsistencyProfile:
    """Frozen per-job constraints: who the character is and where they are."""
    identity: IdentityDescriptor
    environment: EnvironmentProfile
    reference_asset_id: Optional[str] = None
    fingerprint: str = field(default="")

    def __post_init__(self):
        if not self.identity.render().strip() and not self.reference_asset_id:
            raise ValueError("ConsistencyProfile needs an identity descriptor or a reference asset")
        if not self.fingerprint:
            object.__setattr__(self, "fingerprint", fingerprint_identity(self.identity))

    @property
    def identity_text(self) -> str:
        return self.identity.render()

    @property
    def has_reference(self) -> bool:
        return bool(self.reference_asset_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference_asset_id": self.reference_asset_id,
            "identity": self.identity.to_dict(),
            "environment": self.environment.to_dict(),
            "fingerprint": self.fingerprint,
        }


def fingerprint_identity(identity: IdentityDescriptor) -> str:
    """Short deterministic hash of the identity text."""
    return hashlib.sha256(identity.render().encode("utf-8")).hexdigest()[:12]


def placeholder_descriptor(reference_asset_id: str) -> IdentityDescriptor:
    """Minimal descriptor used when only a reference image is available."""
    return IdentityDescriptor(
        summary=(
            f"The main character exactly as shown in reference image {reference_asset_id}; "
            "keep face, hair, build and outfit identical in every panel"
        ),
        is_placeholder=True,
    )


def _dedupe(items: Iterable[str], limit: int) -> Tuple[str, ...]:
    seen: List[str] = []
    for item in items:
        item = item.strip()
        if item and item.lower() not in (s.lower() for s in seen):
            seen.append(item)
        if len(seen) >= limit:
            break
    return tuple(seen)


def _detect_time_of_day(texts: Sequence[str]) -> str:
    for text in texts:
        lowered = text.lower()
        for time_of_day, keywords in TIME_OF_DAY_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                return time_of_day
    return "afternoon"


def _recurring_words(environments: Sequence[str]) -> List[str]:
    counts: Counter = Counter()
    for env in environments:
        # Count each word once per beat
        counts.update({w.strip(".,;:!?") for w in env.lower().split()
                       if len(w.strip(".,;:!?")) >= RECURRING_WORD_MIN_LENGTH})
    if not environments:
        return []
    threshold = max(2, math.ceil(len(environments) * RECURRING_SHARE))
    ranked = sorted(
        (word for word, count in counts.items() if count >= threshold),
        key=lambda w: (-counts[w], w),
    )
    return ranked


def derive_environment(
    beats: Sequence[Any],
    audience: Audience,
    recurring_objects: Optional[Sequence[str]] = None,
) -> EnvironmentProfile:
    """
    Build the environment profile from sequenced beats.

    Args:
        beats: Beats (anything with .environment and .summary)
        audience: Audience tier, selects palette and lighting
        recurring_objects: Caller-declared props kept in every panel

    Returns:
        EnvironmentProfile with at most five key features and colors
    """
    environments = [b.environment for b in beats if getattr(b, "environment", "")]
    location = environments[0] if environments else "story setting"

    # Distinct settings in order of appearance, then words that keep coming back
    features = _dedupe(list(dict.fromkeys(environments))[1:] + _recurring_words(environments),
                       MAX_KEY_FEATURES)

    texts = [f"{getattr(b, 'summary', '')} {getattr(b, 'environment', '')}" for b in beats]

    return EnvironmentProfile(
        location_name=location,
        key_features=features,
        lighting_mood=AUDIENCE_LIGHTING[audience],
        time_of_day=_detect_time_of_day(texts),
        color_palette=_dedupe(AUDIENCE_PALETTES[audience], MAX_PALETTE_COLORS),
        recurring_objects=_dedupe(recurring_objects or (), MAX_KEY_FEATURES),
    )


def build_consistency_profile(
    beats: Sequence[Any],
    audience: Audience,
    descriptor: Optional[IdentityDescriptor] = None,
    reference_asset_id: Optional[str] = None,
    recurring_objects: Optional[Sequence[str]] = None,
) -> ConsistencyProfile:
    """
    Create the job's consistency profile.

    Args:
        beats: Sequenced beats
        audience: Audience tier
        descriptor: Identity from the extractor or the caller's description
        reference_asset_id: Handle of the reference image, if any

    Raises:
        InputValidationError: When neither a usable descriptor nor a reference exists
    """
    if descriptor is not None and not descriptor.render().strip():
        descriptor = None

    if descriptor is None:
        if not reference_asset_id:
            raise InputValidationError(
                "A reference image or a character description is required",
                field="character_description",
            )
        descriptor = placeholder_descriptor(reference_asset_id)
        logger.info("Using placeholder identity descriptor for reference image")

    profile = ConsistencyProfile(
        identity=descriptor,
        environment=derive_environment(beats, audience, recurring_objects),
        reference_asset_id=reference_asset_id,
    )
    logger.info(
        f"Consistency profile {profile.fingerprint} built: "
        f"location='{profile.environment.location_name}', "
        f"features={len(profile.environment.key_features)}"
    )
    return profile
