"""
PanelForge Pipelines Module

Job orchestration for comic generation.

- ComicPipeline: story -> beats -> profile -> panels -> pages -> quality report
- BatchScheduler: bounded-concurrency batches with adaptive pacing
- PanelAssembler: narration and page layout
"""

from .base_pipeline import BasePipeline, PipelineResult, PipelineStatus, PipelineStep, StepProgress
from .batch_scheduler import BatchScheduler, BatchStats, PanelRequest, PanelResult
from .panel_assembler import AssembledPanel, Page, PanelAssembler
from .comic_pipeline import ComicBook, ComicPipeline, ComicRequest, parse_comic_request

__all__ = [
    'BasePipeline',
    'PipelineResult',
    'PipelineStatus',
    'PipelineStep',
    'StepProgress',
    'BatchScheduler',
    'BatchStats',
    'PanelRequest',
    'PanelResult',
    'AssembledPanel',
    'Page',
    'PanelAssembler',
    'ComicBook',
    'ComicPipeline',
    'ComicRequest',
    'parse_comic_request',
]
