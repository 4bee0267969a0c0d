"""
Learning feedback sinks.

High-scoring comics are reported to a FeedbackSink so prompt patterns that
worked can be reused. Delivery is fire-and-forget from the job's point of
view; a failing sink only logs.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from panelforge.core.logging_config import get_logger

from .quality_scorer import QualityReport

logger = get_logger("quality.feedback")


class FeedbackSink(ABC):
    """Receives successful job outcomes."""

    @abstractmethod
    async def record_success(
        self,
        context: Dict[str, Any],
        result: Dict[str, Any],
        report: QualityReport,
    ) -> None:
        pass


class NullFeedbackSink(FeedbackSink):
    """Discards feedback."""

    async def record_success(self, context, result, report) -> None:
        return None


class MemoryFeedbackSink(FeedbackSink):
    """Collects feedback records in a list."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    async def record_success(self, context, result, report) -> None:
        self.records.append({"context": context, "result": result, "report": report.to_dict()})


class JsonlFeedbackSink(FeedbackSink):
    """Appends one JSON line per successful job."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def record_success(self, context, result, report) -> None:
        record = {
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "context": context,
            "result": result,
            "quality": report.to_dict(),
        }
        line = json.dumps(record, default=str) + "\n"
        await asyncio.to_thread(self._append, line)
        logger.debug(f"Feedback appended to {self.path}")

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)
