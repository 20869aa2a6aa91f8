"""End-to-end crawl pass: scrape, enrich, filter, categorise, audit and import."""

from __future__ import annotations

import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Sequence

from eventcrawler.blobstore import ALL_EVENTS_FILENAME, store_json
from eventcrawler.config import AppConfig, LLMSettings
from eventcrawler.models import CrawledEvent, ImportedEventRecord, RunSummary
from eventcrawler.services.enricher import DetailEnricher
from eventcrawler.services.extractors import EXTRACTORS, EventExtractor
from eventcrawler.services.llm import Categorizer, FilterOutcome, ModelRuntimeClient, SafetyFilter
from eventcrawler.services.runtime import ModelRuntimeManager
from eventcrawler.services.sink import JsonFileEventSink, PersistenceSink
from eventcrawler.timing import utcnow

__all__ = ["CrawlOrchestrator", "acceptance_rate"]

logger = logging.getLogger(__name__)

EnricherFactory = Callable[[EventExtractor], DetailEnricher]


def acceptance_rate(accepted: int, scraped: int) -> str:
    return f"{accepted / scraped * 100:.1f}%" if scraped else "N/A"


class CrawlOrchestrator:
    """Run every configured source and push the accepted events into the sink."""

    def __init__(
        self,
        extractors: Sequence[EventExtractor],
        sink: PersistenceSink,
        *,
        settings: LLMSettings | None = None,
        safety: SafetyFilter | None = None,
        categorizer: Categorizer | None = None,
        runtime: ModelRuntimeManager | None = None,
        enricher_factory: EnricherFactory | None = DetailEnricher,
        audit_root: Path | str | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.extractors = list(extractors)
        self.sink = sink
        self.settings = settings or LLMSettings()
        self.runtime = runtime
        self.safety = safety or SafetyFilter(self.settings, runtime=runtime)
        self.categorizer = categorizer or Categorizer(self.settings, runtime=runtime)
        self.enricher_factory = enricher_factory
        self.audit_root = audit_root
        self.max_workers = max_workers

    @classmethod
    def from_config(
        cls,
        config: AppConfig | None = None,
        settings: LLMSettings | None = None,
        sink: PersistenceSink | None = None,
        *,
        audit_root: Path | str | None = None,
    ) -> "CrawlOrchestrator":
        """Wire extractors, model stages and the runtime manager from configuration."""

        config = config or AppConfig.from_file()
        settings = settings or LLMSettings.from_env()

        extractors: List[EventExtractor] = []
        for source in config.iter_sources():
            extractor_cls = EXTRACTORS.get(source.name.lower())
            if extractor_cls is None:
                logger.warning("No extractor registered for source %r, skipping", source.name)
                continue
            extractors.append(extractor_cls(source, audit_root=audit_root))

        client = ModelRuntimeClient(settings)
        runtime = ModelRuntimeManager(settings, client)
        return cls(
            extractors,
            sink or JsonFileEventSink(),
            settings=settings,
            safety=SafetyFilter(settings, client, runtime),
            categorizer=Categorizer(settings, client, runtime),
            runtime=runtime,
            audit_root=audit_root,
        )

    # public API ------------------------------------------------------------------

    def run_crawl(self, limit: int | None = None, test_mode: bool = False) -> RunSummary:
        """Run all sources concurrently, then filter, categorise, audit and import."""

        return self._run(self.extractors, limit, test_mode)

    def run_crawl_source(self, name: str, limit: int | None = None, test_mode: bool = False) -> RunSummary:
        """Run the pipeline for the single source called ``name``."""

        for extractor in self.extractors:
            if extractor.name.lower() == name.lower():
                return self._run([extractor], limit, test_mode)
        raise KeyError(name)

    # pipeline --------------------------------------------------------------------

    def _run(self, extractors: Sequence[EventExtractor], limit: int | None, test_mode: bool) -> RunSummary:
        summary = RunSummary(test_mode=test_mode)
        logger.info("Starting crawl of %d source(s) (limit=%s, test_mode=%s)", len(extractors), limit, test_mode)

        events = self._scrape_all(extractors, limit, summary)
        summary.scraped = len(events)

        session = self.runtime.session() if self.runtime is not None else contextlib.nullcontext()
        with session:
            outcome = self.safety.filter_events(events)
            self._apply_categories(outcome.accepted)

        summary.accepted = len(outcome.accepted)
        summary.rejected = len(outcome.rejected)
        summary.rejection_reasons = dict(outcome.reasons)
        summary.audit_path = self._write_audit(outcome, summary)

        if test_mode:
            summary.events = list(outcome.accepted)
        else:
            self._import(outcome.accepted, summary)

        summary.finished_at = utcnow()
        logger.info(
            "Crawl finished: %d scraped, %d accepted, %d rejected, %d imported, %d skipped",
            summary.scraped,
            summary.accepted,
            summary.rejected,
            summary.imported,
            summary.skipped,
        )
        return summary

    def _scrape_source(self, extractor: EventExtractor, limit: int | None) -> List[CrawledEvent]:
        events = extractor.scrape_events(limit)
        if self.enricher_factory is not None and events:
            self.enricher_factory(extractor).enrich_all(events)
        return events

    def _scrape_all(
        self, extractors: Sequence[EventExtractor], limit: int | None, summary: RunSummary
    ) -> List[CrawledEvent]:
        if not extractors:
            return []

        workers = self.max_workers or len(extractors)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scraper") as pool:
            futures = {extractor.name: pool.submit(self._scrape_source, extractor, limit) for extractor in extractors}

        events: List[CrawledEvent] = []
        for name, future in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error("Source %s failed", name, exc_info=exc)
                summary.source_failures[name] = str(exc) or exc.__class__.__name__
                summary.per_source[name] = 0
                continue
            source_events = future.result()
            summary.per_source[name] = len(source_events)
            events.extend(source_events)
        return events

    def _apply_categories(self, accepted: Sequence[CrawledEvent]) -> None:
        results = self.categorizer.categorize_all(accepted)
        if not results:
            return
        for event in accepted:
            result = results.get(event.category_key)
            if result is None:
                continue
            if not event.event_categories:
                event.event_categories = list(result.categories)
            known = {tag.lower() for tag in event.event_tags}
            for tag in result.tags:
                if tag.lower() not in known:
                    event.event_tags.append(tag)
                    known.add(tag.lower())

    def _write_audit(self, outcome: FilterOutcome, summary: RunSummary) -> str | None:
        payload = {
            "metadata": {
                "scraped_at": summary.started_at.isoformat(),
                "total_scraped": summary.scraped,
                "total_accepted": summary.accepted,
                "total_rejected": summary.rejected,
                "acceptance_rate": acceptance_rate(summary.accepted, summary.scraped),
                "sources": [{"name": name, "event_count": count} for name, count in summary.per_source.items()],
                "source_failures": dict(summary.source_failures),
                "test_mode": summary.test_mode,
                "llm": {"enabled": self.settings.enabled, "model": self.settings.model},
            },
            "accepted_events": [event.audit_dump() for event in outcome.accepted],
            "rejected_events": [
                {
                    "event_name": event.event_name,
                    "external_url": event.external_url,
                    "origin": event.origin,
                    "reason": outcome.reasons.get(event.rejection_key, "Unknown"),
                }
                for event in outcome.rejected
            ],
        }
        try:
            path = store_json(ALL_EVENTS_FILENAME, payload, blob_root=self.audit_root)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not write crawl audit: %s", exc)
            return None
        return str(path)

    def _import(self, accepted: Sequence[CrawledEvent], summary: RunSummary) -> None:
        for event in accepted:
            try:
                if self.sink.find_existing(event.external_id, event.external_url) is not None:
                    summary.skipped += 1
                    continue
                self.sink.insert(ImportedEventRecord.from_crawled(event))
                summary.imported += 1
            except Exception as exc:  # noqa: BLE001 - one bad record must not abort the import
                logger.warning("Failed to import %r: %s", event.event_name, exc)
                summary.skipped += 1
        logger.info("Import complete: %d imported, %d skipped", summary.imported, summary.skipped)
