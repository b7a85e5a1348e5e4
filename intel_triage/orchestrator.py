from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import ProviderUnavailable
from .fetchers import FeedFetcher, build_strategies
from .pipeline import FeedScheduler, Ingestor, ProcessingQueue, QueueWorker, ReviewWorkflow, WorkerPool
from .processors import ClassificationService, DedupStore
from .processors.ai import AIClient, RateLimiter, create_ai_client
from .storage import Repository, SqlRepository
from .utils.cache import TTLCache
from .utils.config_loader import LoadedConfig
from .utils.logging import get_logger
from .utils.pipeline_config import PipelineConfig

logger = get_logger("triage.orchestrator")

_UNSET: Any = object()


@dataclass(slots=True)
class RunSummary:
    feeds: int = 0
    created: int = 0
    duplicates: int = 0
    fetch_errors: List[str] = field(default_factory=list)
    classified: int = 0
    queue: Dict[str, int] = field(default_factory=dict)


class Pipeline:
    """Explicit wiring of every pipeline component.

    Nothing here is global: two pipelines built from different configs (or
    with fake collaborators in tests) run side by side without sharing state.
    """

    def __init__(
        self,
        config: PipelineConfig,
        repository: Repository,
        fetcher: FeedFetcher,
        client: Optional[AIClient],
        *,
        limiter: Optional[RateLimiter] = None,
        timer_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.fetcher = fetcher
        self.client = client
        self.limiter = limiter or RateLimiter(
            config.max_requests_per_minute,
            config.rate_window_seconds,
            config.request_spacing_seconds,
        )
        self.service = ClassificationService(
            repository,
            client,
            self.limiter,
            config=config,
            cache=TTLCache(config.pir_cache_ttl),
        )
        self.queue = ProcessingQueue(
            repository,
            max_attempts=config.max_attempts,
            retry_backoff=config.retry_backoff_seconds,
            claim_timeout=config.claim_timeout_seconds,
            default_priority=config.default_priority,
        )
        self.dedup = DedupStore(repository)
        self.review = ReviewWorkflow(repository)
        self.ingestor = Ingestor(repository, fetcher, self.queue, self.dedup, config=config)
        scheduler_kwargs: Dict[str, Any] = {"activation_delay": config.activation_delay}
        if timer_factory is not None:
            scheduler_kwargs["timer_factory"] = timer_factory
        self.scheduler = FeedScheduler(repository, self.ingestor, **scheduler_kwargs)
        self.worker = QueueWorker(self.queue, self.service, self.review)
        self.pool = WorkerPool(self.worker, config.workers, idle_sleep=config.worker_idle_sleep)

    @classmethod
    def from_config(
        cls,
        config: Optional[PipelineConfig] = None,
        loaded: Optional[LoadedConfig] = None,
        *,
        repository: Optional[Repository] = None,
        client: Any = _UNSET,
        session: Optional[requests.Session] = None,
        timer_factory: Optional[Callable[..., Any]] = None,
    ) -> "Pipeline":
        """Build a pipeline from runtime settings and the loaded YAML file.

        Without an explicit ``config`` the YAML ``settings`` block is applied
        on top of the environment defaults. ``client`` defaults to the backend
        named by ``config.ai_backend``; pass ``None`` explicitly to run on
        keyword classification only.
        """
        if config is None:
            config = PipelineConfig().update(loaded.settings if loaded else {})

        if repository is None:
            repository = SqlRepository(config.db_url)
            repository.create_tables()

        strategies = build_strategies(loaded.proxies if loaded else [])
        fetcher = FeedFetcher(strategies, timeout=config.fetch_timeout, session=session)

        if client is _UNSET:
            try:
                client = create_ai_client(backend=config.ai_backend, timeout=config.classify_timeout)
            except ProviderUnavailable as exc:
                logger.warning("AI backend unavailable (%s); using keyword classification", exc)
                client = None

        pipeline = cls(config, repository, fetcher, client, timer_factory=timer_factory)
        if loaded is not None:
            pipeline.seed(loaded)
        logger.info(
            "Pipeline ready: backend=%s, proxies=%d, workers=%d",
            getattr(client, "name", "keyword"),
            len(strategies),
            config.workers,
        )
        return pipeline

    def seed(self, loaded: LoadedConfig) -> None:
        """Sync configured sources and PIRs into the repository."""
        for source in loaded.sources:
            self.repository.save_source(source)
        for pir in loaded.pirs:
            self.repository.save_pir(pir)
        self.service.invalidate_pirs()
        logger.info("Seeded %d source(s) and %d PIR(s)", len(loaded.sources), len(loaded.pirs))

    def run_once(self) -> RunSummary:
        """Refresh every active feed, then classify whatever is ready."""
        summary = RunSummary()
        for report in self.scheduler.refresh_all():
            summary.feeds += 1
            summary.created += report.created
            summary.duplicates += report.duplicates
            summary.fetch_errors.extend(f"{report.label}: {e}" for e in report.errors)
        summary.classified = self.worker.drain()
        summary.queue = self.queue.status_counts()
        logger.info(
            "Run finished: feeds=%d created=%d duplicates=%d errors=%d classified=%d queue=%s",
            summary.feeds,
            summary.created,
            summary.duplicates,
            len(summary.fetch_errors),
            summary.classified,
            summary.queue,
        )
        return summary

    def start(self) -> None:
        self.scheduler.start()
        self.pool.start()

    def stop(self) -> None:
        self.scheduler.stop()
        self.pool.stop()

    def status(self) -> Dict[str, Any]:
        return {
            "feeds": self.scheduler.feed_status(),
            "queue": self.queue.status_counts(),
            "rate_limiter": self.limiter.status(),
            "classifier": getattr(self.client, "name", "keyword"),
        }
