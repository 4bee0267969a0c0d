"""
PanelForge Quality

Scoring of finished comics and learning feedback.
"""

from .quality_scorer import QualityScorer, QualityReport, grade_for
from .feedback import FeedbackSink, NullFeedbackSink, MemoryFeedbackSink, JsonlFeedbackSink

__all__ = [
    'QualityScorer',
    'QualityReport',
    'grade_for',
    'FeedbackSink',
    'NullFeedbackSink',
    'MemoryFeedbackSink',
    'JsonlFeedbackSink',
]
