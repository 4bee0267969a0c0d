"""
PanelForge Comic Pipeline

Orchestrates one comic job from story text to a graded, paged comic.

Steps:
1. validate        - reject bad requests before any external call
2. generate_beats  - raw beats from the text collaborator
3. sequence_beats  - normalize to the audience panel count
4. build_profile   - identity and environment constraints
5. render_panels   - bounded-concurrency rendering through the dispatcher
6. assemble        - narration and pages
7. score           - quality report, learning feedback when it scores well

Any failure aborts the job; there is no partial comic.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from panelforge.agents.beat_sequencer import Beat, BeatSequencer, parse_raw_beats
from panelforge.agents.prompt_compiler import PromptCompiler
from panelforge.consistency.profile import (
    ConsistencyProfile,
    IdentityDescriptor,
    build_consistency_profile,
)
from panelforge.core.asset_store import ObjectStore
from panelforge.core.config import PanelforgeConfig
from panelforge.core.constants import MIN_STORY_LENGTH, Audience, EndpointKind, audience_profile
from panelforge.core.exceptions import (
    ConsistencyPrerequisiteMissingError,
    InputValidationError,
    PipelineError,
    UpstreamError,
)
from panelforge.core.logging_config import get_logger, job_logger
from panelforge.core.retry import ClockFn, SleepFn
from panelforge.dispatch.circuit_breaker import CircuitBreakerConfig, EndpointRegistry
from panelforge.dispatch.dispatcher import ResilientDispatcher
from panelforge.llm.api_clients import BeatGenerator, IdentityExtractor, RenderClient
from panelforge.quality.feedback import FeedbackSink
from panelforge.quality.quality_scorer import QualityReport, QualityScorer

from .base_pipeline import BasePipeline, PipelineStep
from .batch_scheduler import BatchScheduler, PanelRequest, PanelResult
from .panel_assembler import Page, PanelAssembler

logger = get_logger("pipelines.comic")


class ComicRequest(BaseModel):
    """A request to turn a story into a comic."""
    story: str
    audience: Audience = Audience.CHILDREN
    reference_image: Optional[str] = None
    character_description: Optional[str] = None
    title: Optional[str] = None
    art_style: Optional[str] = None
    recurring_objects: List[str] = Field(default_factory=list)

    @field_validator("story")
    @classmethod
    def _story_long_enough(cls, value: str) -> str:
        value = value.strip()
        if len(value) < MIN_STORY_LENGTH:
            raise ValueError(f"story must be at least {MIN_STORY_LENGTH} characters")
        return value

    @field_validator("audience", mode="before")
    @classmethod
    def _parse_audience(cls, value: Any) -> Audience:
        return Audience.parse(value)

    @model_validator(mode="after")
    def _needs_character_source(self) -> "ComicRequest":
        has_reference = bool(self.reference_image and self.reference_image.strip())
        has_description = bool(self.character_description and self.character_description.strip())
        if not (has_reference or has_description):
            raise ValueError("a reference image or a character description is required")
        return self


def parse_comic_request(data: Union[ComicRequest, Dict[str, Any]]) -> ComicRequest:
    """
    Validate raw input into a ComicRequest.

    Raises:
        InputValidationError: With the first validation problem
    """
    if isinstance(data, ComicRequest):
        return data
    if not isinstance(data, dict):
        raise InputValidationError(f"Expected a mapping, got {type(data).__name__}")
    try:
        return ComicRequest.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "invalid request").removeprefix("Value error, ")
        raise InputValidationError(message, field=location)


@dataclass
class ComicBook:
    """The finished comic."""
    title: str
    audience: Audience
    pages: List[Page]
    quality_report: QualityReport
    profile: ConsistencyProfile
    beats: List[Beat] = field(default_factory=list)
    results: List[PanelResult] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def panel_count(self) -> int:
        return sum(len(p.panels) for p in self.pages)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "audience": self.audience.value,
            "pages": [p.to_dict() for p in self.pages],
            "quality": self.quality_report.to_dict(),
            "consistency_profile": self.profile.to_dict(),
            "beats": [b.to_dict() for b in self.beats],
            "panels": [r.to_dict() for r in self.results],
            "metadata": self.metadata,
        }


@dataclass
class ComicJob:
    """Working state carried between steps."""
    request: ComicRequest
    started_at: float
    deadline: Optional[float] = None
    raw_beats: Any = None
    beats: List[Beat] = field(default_factory=list)
    profile: Optional[ConsistencyProfile] = None
    results: List[PanelResult] = field(default_factory=list)
    pages: List[Page] = field(default_factory=list)
    scheduler: Optional[BatchScheduler] = None
    compiler: Optional[PromptCompiler] = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def log(self):
        return job_logger(logger, self.job_id)


class ComicPipeline(BasePipeline[ComicRequest, ComicBook]):
    """
    Story to comic.

    Usage:
        pipeline = ComicPipeline.from_config(config, render_client, beat_generator, store)
        result = await pipeline.run({"story": story, "audience": "children",
                                     "character_description": "..."})
    """

    def __init__(
        self,
        dispatcher: ResilientDispatcher,
        beat_generator: BeatGenerator,
        store: ObjectStore,
        identity_extractor: Optional[IdentityExtractor] = None,
        config: Optional[PanelforgeConfig] = None,
        feedback_sink: Optional[FeedbackSink] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ):
        self.config = config or PanelforgeConfig()
        self.dispatcher = dispatcher
        self.beat_generator = beat_generator
        self.identity_extractor = identity_extractor
        self.store = store
        self.feedback_sink = feedback_sink
        self.sequencer = BeatSequencer()
        self.compiler = PromptCompiler.from_config(self.config.prompt, self.config.dispatch.size_hint)
        self.assembler = PanelAssembler()
        self.scorer = QualityScorer(self.config.quality.weights)
        self._sleep = sleep
        self._clock = clock
        self._feedback_tasks: Set[asyncio.Task] = set()
        super().__init__("comic_generation", clock=clock)

    @classmethod
    def from_config(
        cls,
        config: PanelforgeConfig,
        render_client: RenderClient,
        beat_generator: BeatGenerator,
        store: ObjectStore,
        identity_extractor: Optional[IdentityExtractor] = None,
        feedback_sink: Optional[FeedbackSink] = None,
        registry: Optional[EndpointRegistry] = None,
    ) -> "ComicPipeline":
        """Wire a pipeline from configuration; pass a registry to share breakers across jobs."""
        registry = registry or EndpointRegistry(CircuitBreakerConfig.from_dispatch_config(config.dispatch))
        dispatcher = ResilientDispatcher(
            render_client,
            registry=registry,
            retry_policy=config.retry,
            timeout_seconds=config.dispatch.timeout_seconds,
        )
        return cls(
            dispatcher,
            beat_generator,
            store,
            identity_extractor=identity_extractor,
            config=config,
            feedback_sink=feedback_sink,
        )

    def _define_steps(self) -> None:
        self._steps = [
            PipelineStep("validate", "Validate the comic request"),
            PipelineStep("generate_beats", "Generate raw story beats"),
            PipelineStep("sequence_beats", "Normalize beats to the panel count"),
            PipelineStep("build_profile", "Build the consistency profile"),
            PipelineStep("render_panels", "Render panels in batches"),
            PipelineStep("assemble", "Write narration and lay out pages"),
            PipelineStep("score", "Grade the comic"),
        ]

    async def _execute_step(self, step: PipelineStep, input_data: Any, context: Dict[str, Any]) -> Any:
        handlers = {
            "validate": self._validate,
            "generate_beats": self._generate_beats,
            "sequence_beats": self._sequence_beats,
            "build_profile": self._build_profile,
            "render_panels": self._render_panels,
            "assemble": self._assemble,
            "score": self._score,
        }
        return await handlers[step.name](input_data, context)

    async def generate(self, request: Union[ComicRequest, Dict[str, Any]]) -> ComicBook:
        """
        Run the job and return the comic, raising the failure instead of wrapping it.

        Raises:
            PanelforgeError: Whatever stopped the job
        """
        result = await self.run(request)
        if result.success:
            return result.output
        if result.exception is not None:
            raise result.exception
        raise PipelineError(f"Comic job ended with status {result.status.value}")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _validate(self, data: Any, context: Dict[str, Any]) -> ComicJob:
        request = parse_comic_request(data)
        started = self._clock()
        limit = self.config.scheduler.job_deadline_seconds
        job = ComicJob(
            request=request,
            started_at=started,
            deadline=started + limit if limit else None,
        )
        context["audience"] = request.audience.value
        context["job_id"] = job.job_id
        job.log.info(
            f"Accepted: audience={request.audience.value}, "
            f"story={len(request.story)} chars, reference={'yes' if request.reference_image else 'no'}"
        )
        return job

    async def _generate_beats(self, job: ComicJob, context: Dict[str, Any]) -> ComicJob:
        request = job.request
        job.raw_beats = await self.dispatcher.call(
            EndpointKind.BEAT_GENERATION,
            lambda: self.beat_generator.generate_beats(request.story, request.audience),
            label="beat generation",
        )
        return job

    async def _sequence_beats(self, job: ComicJob, context: Dict[str, Any]) -> ComicJob:
        parsed = parse_raw_beats(job.raw_beats)
        job.beats = self.sequencer.sequence(parsed, job.request.audience)
        context["synthetic_beats"] = sum(1 for b in job.beats if b.synthetic)
        job.log.info(f"Sequenced {len(job.beats)} beats ({context['synthetic_beats']} synthetic)")
        return job

    async def _build_profile(self, job: ComicJob, context: Dict[str, Any]) -> ComicJob:
        request = job.request
        descriptor: Optional[IdentityDescriptor] = None

        if request.character_description and request.character_description.strip():
            descriptor = IdentityDescriptor.from_text(request.character_description)
        elif request.reference_image and self.identity_extractor is not None:
            try:
                descriptor = await self.dispatcher.call(
                    EndpointKind.IDENTITY_EXTRACTION,
                    lambda: self.identity_extractor.describe_reference(request.reference_image),
                    label="identity extraction",
                )
            except UpstreamError as e:
                job.log.warning(f"Identity extraction failed, using placeholder descriptor: {e}")

        job.profile = build_consistency_profile(
            job.beats,
            request.audience,
            descriptor=descriptor,
            reference_asset_id=request.reference_image,
            recurring_objects=request.recurring_objects,
        )
        return job

    async def _render_panels(self, job: ComicJob, context: Dict[str, Any]) -> ComicJob:
        if job.profile is None:
            raise ConsistencyPrerequisiteMissingError()

        total = len(job.beats)
        requests = [
            PanelRequest(position=beat.index, beat=beat, profile=job.profile, total_count=total)
            for beat in job.beats
        ]
        job.compiler = self.compiler.with_style(job.request.art_style)
        job.scheduler = BatchScheduler(self.config.scheduler, sleep=self._sleep, clock=self._clock)
        job.results = await job.scheduler.run(
            requests,
            lambda request: self._render_panel(request, job.compiler),
            deadline=job.deadline,
        )
        return job

    async def _render_panel(self, request: PanelRequest, compiler: PromptCompiler) -> PanelResult:
        prompt = compiler.compile(
            request.beat,
            request.profile,
            request.position,
            request.total_count,
            previous_reference=request.previous_reference,
        )
        attempts = 1

        def count_retry(error: BaseException, attempt: int, delay: float) -> None:
            nonlocal attempts
            attempts = attempt + 1

        started = self._clock()
        asset = await self.dispatcher.render(
            prompt.text,
            prompt.reference_assets,
            prompt.size_hint,
            label=f"panel {request.position}",
            on_retry=count_retry,
        )
        handle = await self.store.persist(asset.data, asset.mime_type)

        return PanelResult(
            position=request.position,
            asset_handle=handle,
            latency_seconds=self._clock() - started,
            attempts=attempts,
            payload=prompt.text,
            mime_type=asset.mime_type,
        )

    async def _assemble(self, job: ComicJob, context: Dict[str, Any]) -> ComicJob:
        policy = audience_profile(job.request.audience)
        job.pages = self.assembler.assemble(job.beats, job.results, policy.panels_per_page)
        job.results = self.assembler.narrate_results(job.beats, job.results)
        return job

    async def _score(self, job: ComicJob, context: Dict[str, Any]) -> ComicBook:
        request = job.request
        report = self.scorer.score(job.beats, job.results, job.profile, request.audience)

        comic = ComicBook(
            title=request.title or "Untitled",
            audience=request.audience,
            pages=job.pages,
            quality_report=report,
            profile=job.profile,
            beats=job.beats,
            results=job.results,
            metadata={
                "job_id": job.job_id,
                "duration_seconds": round(self._clock() - job.started_at, 3),
                "panel_count": len(job.results),
                "page_count": len(job.pages),
                "audience": request.audience.value,
                "art_style": job.compiler.art_style,
                "character_consistency_enforced": True,
                "environment_consistency_enforced": True,
                "fingerprint": job.profile.fingerprint,
                "synthetic_beats": context.get("synthetic_beats", 0),
                "batch_stats": [s.to_dict() for s in job.scheduler.stats],
                "dispatch_metrics": self.dispatcher.registry.snapshot(),
            },
        )

        job.log.info(f"Done: {comic.panel_count} panels, {comic.page_count} pages, grade {report.grade}")
        if self.feedback_sink is not None and report.overall_score >= self.config.quality.learning_threshold:
            self._schedule_feedback(comic)
        return comic

    # ------------------------------------------------------------------
    # Learning feedback
    # ------------------------------------------------------------------

    def _schedule_feedback(self, comic: ComicBook) -> None:
        task = asyncio.create_task(self._deliver_feedback(comic))
        self._feedback_tasks.add(task)
        task.add_done_callback(self._feedback_tasks.discard)

    async def _deliver_feedback(self, comic: ComicBook) -> None:
        context = {
            "audience": comic.audience.value,
            "art_style": comic.metadata.get("art_style"),
            "job_id": comic.metadata.get("job_id"),
            "fingerprint": comic.profile.fingerprint,
        }
        result = {
            "panel_count": comic.panel_count,
            "page_count": comic.page_count,
            "prompts": [r.payload for r in comic.results],
        }
        try:
            await self.feedback_sink.record_success(context, result, comic.quality_report)
        except Exception as e:
            logger.warning(f"Feedback delivery failed: {e}")

    async def flush_feedback(self) -> None:
        """Wait for outstanding feedback deliveries."""
        if self._feedback_tasks:
            await asyncio.gather(*list(self._feedback_tasks), return_exceptions=True)
