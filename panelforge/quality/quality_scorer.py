"""
PanelForge Quality Scorer

Grades a finished comic with seven weighted sub-scores.

Each sub-score starts from a base value and earns bonuses for properties of
the beats, results and profile. The scorer never raises: an internal error
produces a degraded default report instead of failing the job.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from panelforge.agents.beat_sequencer import Beat
from panelforge.consistency.profile import ConsistencyProfile
from panelforge.core.constants import (
    Audience,
    DEFAULT_QUALITY_WEIGHTS,
    DEGRADED_OVERALL_SCORE,
    FLOOR_GRADE,
    GRADE_THRESHOLDS,
    MAX_CONSECUTIVE_PANEL_TYPE,
    NarrativeFunction,
    audience_profile,
)
from panelforge.core.logging_config import get_logger

if TYPE_CHECKING:
    from panelforge.pipelines.batch_scheduler import PanelResult

logger = get_logger("quality.scorer")

SUB_SCORES = tuple(DEFAULT_QUALITY_WEIGHTS)


def grade_for(score: float) -> str:
    """Letter grade for a 0-100 score."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return FLOOR_GRADE


@dataclass
class QualityReport:
    """Weighted quality assessment of one comic."""
    character_consistency: float
    environment_coherence: float
    narrative_coherence: float
    visual_quality: float
    technical_execution: float
    audience_alignment: float
    dialogue_effectiveness: float
    overall_score: int
    grade: str
    degraded: bool = False
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def sub_scores(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SUB_SCORES}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scores": self.sub_scores,
            "overall_score": self.overall_score,
            "grade": self.grade,
            "degraded": self.degraded,
            "generated_at": self.generated_at,
        }

    @classmethod
    def degraded_default(cls) -> "QualityReport":
        value = float(DEGRADED_OVERALL_SCORE)
        return cls(
            **{name: value for name in SUB_SCORES},
            overall_score=DEGRADED_OVERALL_SCORE,
            grade=grade_for(DEGRADED_OVERALL_SCORE),
            degraded=True,
        )


def _share(count: int, total: int) -> float:
    return count / total if total else 0.0


class QualityScorer:
    """
    Computes QualityReports.

    Args:
        weights: Sub-score weights; must name every sub-score and sum to 1.0
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        weights = dict(weights or DEFAULT_QUALITY_WEIGHTS)
        if set(weights) != set(SUB_SCORES):
            raise ValueError(f"weights must name exactly: {', '.join(SUB_SCORES)}")
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ValueError("weights must sum to 1.0")
        self.weights = weights

    def score(
        self,
        beats: Sequence[Beat],
        results: Sequence["PanelResult"],
        profile: Optional[ConsistencyProfile],
        audience: Audience,
    ) -> QualityReport:
        """Grade a comic; never raises."""
        try:
            audience = Audience.parse(audience)
            scores = {
                "character_consistency": self._character_consistency(results, profile),
                "environment_coherence": self._environment_coherence(beats, profile),
                "narrative_coherence": self._narrative_coherence(beats),
                "visual_quality": self._visual_quality(beats, results),
                "technical_execution": self._technical_execution(results),
                "audience_alignment": self._audience_alignment(beats, audience),
                "dialogue_effectiveness": self._dialogue_effectiveness(beats, audience),
            }
            overall = round(sum(self.weights[name] * value for name, value in scores.items()))
            overall = max(0, min(100, overall))
            report = QualityReport(**scores, overall_score=overall, grade=grade_for(overall))
        except Exception:
            logger.exception("Quality scoring failed; using default report")
            return QualityReport.degraded_default()

        logger.info(f"Quality score {report.overall_score} ({report.grade})")
        return report

    def _character_consistency(self, results: Sequence["PanelResult"], profile) -> float:
        if profile is None or not results:
            return 85.0
        score = 90.0
        if not profile.identity.is_placeholder:
            score += 5
        if profile.has_reference:
            score += 3
        if len(results) > 8:
            score += 2
        return min(100.0, score)

    def _environment_coherence(self, beats: Sequence[Beat], profile) -> float:
        if profile is None or not beats:
            return 75.0
        score = 85.0
        env = profile.environment
        anchors = [env.location_name.lower()] + [f.lower() for f in env.key_features]
        anchored = sum(1 for b in beats if any(a and a in b.environment.lower() for a in anchors))
        if _share(anchored, len(beats)) > 0.8:
            score += 10
        if env.key_features or env.recurring_objects:
            score += 5
        return min(100.0, score)

    def _narrative_coherence(self, beats: Sequence[Beat]) -> float:
        if not beats:
            return 75.0
        score = 80.0
        if (beats[0].narrative_function == NarrativeFunction.ESTABLISH
                and beats[-1].narrative_function == NarrativeFunction.RESOLVE):
            score += 10
        if any(b.narrative_function == NarrativeFunction.CLIMAX for b in beats):
            score += 5
        if _share(sum(1 for b in beats if b.synthetic), len(beats)) < 0.2:
            score += 5
        return min(100.0, score)

    def _visual_quality(self, beats: Sequence[Beat], results: Sequence["PanelResult"]) -> float:
        score = 85.0
        if results and all(r.asset_handle for r in results):
            score += 8
        if len({b.panel_type for b in beats}) > 2:
            score += 5

        longest_run, run = 0, 0
        for previous, current in zip([None] + list(beats), beats):
            run = run + 1 if previous is not None and previous.panel_type == current.panel_type else 1
            longest_run = max(longest_run, run)
        if beats and longest_run <= MAX_CONSECUTIVE_PANEL_TYPE:
            score += 2
        return min(100.0, score)

    def _technical_execution(self, results: Sequence["PanelResult"]) -> float:
        if not results:
            return 75.0
        score = 88.0
        if _share(sum(1 for r in results if len(r.payload or "") > 50), len(results)) > 0.9:
            score += 5
        if all(r.attempts == 1 for r in results):
            score += 4
        if all(r.mime_type.startswith("image/") for r in results):
            score += 3
        return min(100.0, score)

    def _audience_alignment(self, beats: Sequence[Beat], audience: Audience) -> float:
        policy = audience_profile(audience)
        score = 85.0
        if len(beats) == policy.panel_count:
            score += 5
        dialogue = [b.dialogue for b in beats if b.has_speech_bubble and b.dialogue]
        if all(len(d.split()) <= policy.max_dialogue_words + 1 for d in dialogue):
            score += 5
        if _share(sum(1 for b in beats if b.synthetic), len(beats)) <= 0.5:
            score += 5
        return min(100.0, score)

    def _dialogue_effectiveness(self, beats: Sequence[Beat], audience: Audience) -> float:
        spoken = [b for b in beats if b.has_speech_bubble and b.dialogue]
        if not spoken:
            return 85.0
        score = 80.0
        ratio = _share(len(spoken), len(beats))
        if 0.3 <= ratio <= 0.6 or abs(ratio - audience_profile(audience).speech_bubble_ratio) <= 0.1:
            score += 10
        if _share(sum(1 for b in spoken if 10 < len(b.dialogue) < 100), len(spoken)) > 0.8:
            score += 5
        if len({b.emotion for b in spoken}) > 1:
            score += 5
        return min(100.0, score)
