"""
Curation pipeline orchestrator.

feeds -> fetch -> time window -> URL validation -> dedupe -> freshness ->
score -> diversity selection -> enhancement, then, on request, prompt ->
scheduler -> repair -> alignment validation.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from curator.models.content import FeedConfig, ScoredArticle, Topic
from curator.pipeline.alignment_validator import AlignmentValidator, ValidationReport
from curator.pipeline.config import PipelineConfig
from curator.pipeline.diversity_selector import DiversitySelector, SelectionResult
from curator.services.ai_service import AIService, AIServiceError, Backend, GeminiBackend
from curator.services.category_registry import CategoryRegistry
from curator.services.content_enhancer import ContentEnhancer, EnhancedContent
from curator.services.deduplication_service import DeduplicationService
from curator.services.freshness_scorer import FreshnessScorer
from curator.services.rate_limiter import SlidingWindowRateLimiter
from curator.services.request_queue import GenerationScheduler, SchedulerError
from curator.services.response_repair import RepairOutcome, ResponseRepairer
from curator.services.rss import FeedFetchReport, RSSService
from curator.services.source_ranking_service import SourceRankingService
from curator.services.url_validator import URLValidationReport, URLValidator, unsafe_reason
from curator.utils.error_monitoring import ErrorHandler
from curator.utils.logging_config import PerformanceTracker, log_pipeline_metrics


class PipelineError(Exception):
    """User-visible pipeline failure with a single descriptive message"""
    pass


@dataclass
class PipelineMetrics:
    """Execution metrics"""
    start_time: datetime
    end_time: Optional[datetime] = None

    # Stage timings (seconds)
    fetch_time: float = 0.0
    validate_time: float = 0.0
    score_time: float = 0.0
    select_time: float = 0.0
    enhance_time: float = 0.0
    generate_time: float = 0.0

    # Counts
    items_fetched: int = 0
    items_in_window: int = 0
    items_after_validation: int = 0
    items_after_dedup: int = 0
    items_fresh: int = 0
    items_selected: int = 0
    window_hours: int = 0

    def total_time(self) -> float:
        """Calculate total execution time"""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.items_fetched,
            "in_window": self.items_in_window,
            "window_hours": self.window_hours,
            "after_url_validation": self.items_after_validation,
            "after_dedup": self.items_after_dedup,
            "fresh": self.items_fresh,
            "selected": self.items_selected,
            "total_seconds": round(self.total_time(), 2),
        }


@dataclass
class CurationResult:
    selected: List[ScoredArticle]
    selection: SelectionResult
    feed_report: FeedFetchReport
    metrics: PipelineMetrics
    url_report: Optional[URLValidationReport] = None
    enhanced: List[EnhancedContent] = field(default_factory=list)

    @property
    def diversity_score(self) -> int:
        return self.selection.diversity_score

    @property
    def preset(self) -> str:
        return self.selection.preset

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": [s.to_dict() for s in self.selected],
            "diversity_score": self.diversity_score,
            "preset": self.preset,
            "attempts": self.selection.attempts,
            "distribution": self.selection.distribution(),
            "feeds": self.feed_report.summary(),
            "stats": self.metrics.to_dict(),
        }


@dataclass
class GenerationOutcome:
    topics: List[Topic]
    report: ValidationReport
    repair: RepairOutcome
    raw_response: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": [t.to_dict() for t in self.topics],
            "validation": self.report.to_dict(),
            "repair_stage": self.repair.stage,
        }


PromptBuilder = Callable[[Sequence[ScoredArticle], Dict[str, EnhancedContent]], str]


def build_prompt(selected: Sequence[ScoredArticle], enhanced: Dict[str, EnhancedContent]) -> str:
    """Default prompt: one topic per selected article, answered as a single JSON object."""
    lines = [
        f"Write {len(selected)} short news topics, one for each article below.",
        "Use only facts stated in the article text. Do not exaggerate.",
        "Respond with one JSON object and nothing else, in this shape:",
        '{"topics": [{"headline": "...", "summary": "...", "keyTakeaway": "...", '
        '"sourceUrl": "...", "category": "...", "imagePrompt": "..."}]}',
        "sourceUrl must be copied exactly from the article's URL line.",
        "",
    ]
    for index, scored in enumerate(selected, 1):
        article = scored.article
        extra = enhanced.get(article.canonical_url)
        body = extra.excerpt if extra and extra.excerpt else (article.summary or "")
        lines.extend([
            f"[{index}] {article.title}",
            f"URL: {article.canonical_url}",
            f"Source: {article.source_domain} | Category: {article.category}",
            f"Text: {body[:600]}",
            "",
        ])
    return "\n".join(lines)


class CurationPipeline:
    """
    Owns every pipeline stage, plus the scheduler and limiter state shared
    across generation requests.
    """

    def __init__(self,
                 rss: RSSService,
                 scheduler: Optional[GenerationScheduler] = None,
                 limiter: Optional[SlidingWindowRateLimiter] = None,
                 url_validator: Optional[URLValidator] = None,
                 dedupe: Optional[DeduplicationService] = None,
                 freshness: Optional[FreshnessScorer] = None,
                 ranking: Optional[SourceRankingService] = None,
                 selector: Optional[DiversitySelector] = None,
                 enhancer: Optional[ContentEnhancer] = None,
                 repairer: Optional[ResponseRepairer] = None,
                 validator: Optional[AlignmentValidator] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 max_articles: int = 10,
                 min_articles_for_window: int = 10,
                 enhance_max_articles: int = 20):
        self.rss = rss
        self.scheduler = scheduler
        self.limiter = limiter or SlidingWindowRateLimiter()
        self.url_validator = url_validator
        self.dedupe = dedupe or DeduplicationService()
        self.freshness = freshness or FreshnessScorer()
        self.ranking = ranking or SourceRankingService()
        self.selector = selector or DiversitySelector()
        self.enhancer = enhancer
        self.repairer = repairer or ResponseRepairer()
        self.validator = validator or AlignmentValidator()
        self.error_handler = error_handler or ErrorHandler()
        self.max_articles = max_articles
        self.min_articles_for_window = min_articles_for_window
        self.enhance_max_articles = enhance_max_articles
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls,
                    config: PipelineConfig,
                    feeds: Sequence[FeedConfig],
                    backend: Optional[Backend] = None,
                    with_backend: bool = True) -> "CurationPipeline":
        """Wire every service from configuration; the backend is optional for curate-only runs."""
        error_handler = ErrorHandler()
        scheduler = None
        if with_backend:
            backend = backend or GeminiBackend(api_key=config.gemini_api_key, model=config.gemini_model)
            ai_service = AIService(backend, max_retries=config.max_retries, base_delay=config.retry_base_delay)
            scheduler = GenerationScheduler(
                ai_service.generate,
                min_interval=config.min_interval,
                max_queue_size=config.max_queue_size,
                request_timeout=config.request_timeout,
            )

        return cls(
            rss=RSSService(
                feeds,
                max_articles_per_feed=config.max_articles_per_feed,
                max_concurrent_feeds=config.max_concurrent_feeds,
                error_handler=error_handler,
            ),
            scheduler=scheduler,
            limiter=SlidingWindowRateLimiter(
                max_requests=config.rate_limit_requests,
                window_seconds=config.rate_limit_window,
            ),
            url_validator=URLValidator(timeout=config.url_timeout) if config.validate_urls else None,
            freshness=FreshnessScorer(strict=config.strict_freshness, min_score=config.min_freshness_score),
            ranking=SourceRankingService(config_path=config.authority_path),
            selector=DiversitySelector(
                target_count=config.target_articles,
                minimum_count=config.minimum_articles,
            ),
            enhancer=ContentEnhancer() if config.enhance_content else None,
            validator=AlignmentValidator(
                CategoryRegistry(),
                strict_mode=config.strict_mode,
                min_alignment=config.min_alignment,
            ),
            error_handler=error_handler,
            max_articles=config.max_articles,
            min_articles_for_window=config.min_articles_for_window,
            enhance_max_articles=config.enhance_max_articles,
        )

    async def curate(self, now: Optional[datetime] = None) -> CurationResult:
        """
        Fetch, filter, score and select articles.

        Raises PipelineError when nothing survives filtering.
        """
        metrics = PipelineMetrics(start_time=datetime.now(timezone.utc))
        now = now or metrics.start_time

        with PerformanceTracker("Fetch feeds", self.logger) as tracker:
            feed_report = await self.rss.fetch_all_feeds()
        metrics.fetch_time = tracker.duration_ms / 1000
        metrics.items_fetched = len(feed_report.articles)
        if not feed_report.articles:
            raise PipelineError(
                f"No articles fetched ({len(feed_report.failed_feeds)} feeds failed, "
                f"{feed_report.summary()['feeds_skipped']} skipped)"
            )

        articles, metrics.window_hours = self.rss.select_time_window(
            feed_report.articles, self.min_articles_for_window, now=now
        )
        metrics.items_in_window = len(articles)

        url_report: Optional[URLValidationReport] = None
        # Scheme and local-host rules apply even when HTTP probing is off
        safe = [a for a in articles if not (a.canonical_url and unsafe_reason(a.canonical_url))]
        if len(safe) < len(articles):
            self.logger.warning(f"⚠️ Dropped {len(articles) - len(safe)} articles with unsafe links")
        articles = safe
        if self.url_validator is not None and articles:
            with PerformanceTracker("Validate URLs", self.logger) as tracker:
                articles, url_report = await self.url_validator.process_and_validate(articles)
            metrics.validate_time = tracker.duration_ms / 1000
            log_pipeline_metrics(self.logger, "url_validation", url_report.checked, len(articles),
                                 tracker.duration_ms, fallbacks=url_report.fallbacks_applied)
        metrics.items_after_validation = len(articles)

        articles = self.dedupe.deduplicate(articles)
        metrics.items_after_dedup = len(articles)

        with PerformanceTracker("Score articles", self.logger) as tracker:
            fresh, _dropped = self.freshness.filter_fresh(articles, now)
            metrics.items_fresh = len(fresh)
            scored = self.ranking.score_articles(fresh)
        metrics.score_time = tracker.duration_ms / 1000
        log_pipeline_metrics(self.logger, "scoring", metrics.items_after_dedup, len(scored), tracker.duration_ms)

        if not scored:
            raise PipelineError(
                f"No articles left after filtering ({metrics.items_fetched} fetched, "
                f"{metrics.items_after_dedup} unique, none fresh enough)"
            )

        with PerformanceTracker("Select articles", self.logger) as tracker:
            selection = self.selector.select_progressive(scored, self.max_articles)
        metrics.select_time = tracker.duration_ms / 1000
        if not selection.selected:
            raise PipelineError("Diversity selection returned no articles")

        selected = list(selection.selected)
        enhanced: List[EnhancedContent] = []
        if self.enhancer is not None:
            with PerformanceTracker("Enhance content", self.logger) as tracker:
                enhanced = await self.enhancer.enhance(selected, max_articles=self.enhance_max_articles)
            metrics.enhance_time = tracker.duration_ms / 1000
            for item in enhanced:
                if item.extraction_method == "extracted":
                    item.scored.article = replace(item.scored.article, content=item.full_text)
                self.ranking.rescore_quality(item.scored, item.quality_score)
            selected.sort(key=lambda s: (-s.composite_score, s.article.feed_order))

        metrics.items_selected = len(selected)
        metrics.end_time = datetime.now(timezone.utc)
        log_pipeline_metrics(
            self.logger, "curation", metrics.items_fetched, len(selected),
            metrics.total_time() * 1000, preset=selection.preset, diversity=selection.diversity_score,
        )
        return CurationResult(
            selected=selected,
            selection=selection,
            feed_report=feed_report,
            metrics=metrics,
            url_report=url_report,
            enhanced=enhanced,
        )

    async def generate_topics(self,
                              caller_id: str,
                              curation: CurationResult,
                              prompt_builder: Optional[PromptBuilder] = None) -> GenerationOutcome:
        """
        Generate topics for a curation result and validate them against it.

        Raises PipelineError when the caller is rate limited, the scheduler
        rejects the request or the backend exhausts its retries.
        """
        if self.scheduler is None:
            raise PipelineError("No generative backend configured")

        if not self.limiter.try_acquire(caller_id):
            status = self.limiter.get_status(caller_id)
            raise PipelineError(
                f"Rate limit exceeded for {caller_id}; try again in "
                f"{status['next_available_in_ms'] / 1000:.0f}s"
            )

        enhanced_by_url = {e.scored.url: e for e in curation.enhanced}
        prompt = (prompt_builder or build_prompt)(curation.selected, enhanced_by_url)

        start = datetime.now(timezone.utc)
        try:
            raw = await self.scheduler.submit(caller_id, prompt, {"caller_id": caller_id})
        except SchedulerError as e:
            self.error_handler.handle_error(e, "scheduler", caller_id)
            raise PipelineError(f"Generation request rejected: {e}") from e
        except AIServiceError as e:
            self.error_handler.handle_error(e, "backend", caller_id)
            raise PipelineError(str(e)) from e
        curation.metrics.generate_time = (datetime.now(timezone.utc) - start).total_seconds()

        repair = self.repairer.repair(raw)
        if repair.is_placeholder:
            self.logger.warning(f"⚠️ Backend output for {caller_id} was unrecoverable; no topics will be published")

        topics = [Topic.from_dict(item) for item in repair.topics]
        report = self.validator.validate(topics, curation.selected, placeholder=repair.is_placeholder)
        return GenerationOutcome(
            topics=report.valid_topics,
            report=report,
            repair=repair,
            raw_response=str(raw or ""),
        )

    async def run(self, caller_id: str = "cli") -> Tuple[CurationResult, GenerationOutcome]:
        """Curate, then generate and validate topics in one pass."""
        curation = await self.curate()
        outcome = await self.generate_topics(caller_id, curation)
        return curation, outcome
