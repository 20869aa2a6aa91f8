"""API routes exposing the crawl pipeline and its reports."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool

from eventcrawler.blobstore import ALL_EVENTS_FILENAME, load_json
from eventcrawler.config import AppConfig, LLMSettings
from eventcrawler.models import RunSummary
from eventcrawler.services.llm import ModelRuntimeClient, RuntimeHealth
from eventcrawler.services.orchestrator import CrawlOrchestrator
from eventcrawler.services.sink import JsonFileEventSink, PersistenceSink
from eventcrawler.services.status_cleanup import EventStatusRepair, StatusRepairSummary

logger = logging.getLogger(__name__)

router = APIRouter()


def build_sink() -> PersistenceSink:
    return JsonFileEventSink()


def build_orchestrator() -> CrawlOrchestrator:
    """Create an orchestrator from ``data/sources.json`` and the environment."""

    return CrawlOrchestrator.from_config(AppConfig.from_file(), LLMSettings.from_env(), build_sink())


def load_latest_audit() -> Dict[str, Any] | None:
    data = load_json(ALL_EVENTS_FILENAME)
    return data if isinstance(data, dict) else None


def _orchestrator_or_500() -> CrawlOrchestrator:
    try:
        return build_orchestrator()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/crawl", response_model=RunSummary)
async def trigger_crawl(limit: int | None = None, test_mode: bool = False) -> RunSummary:
    """Run every configured source and import the accepted events."""

    orchestrator = _orchestrator_or_500()
    try:
        return await run_in_threadpool(orchestrator.run_crawl, limit, test_mode)
    except Exception as exc:  # noqa: BLE001 - surface any pipeline failure to the caller
        logger.exception("Crawl failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/crawl/{source}", response_model=RunSummary)
async def trigger_source_crawl(source: str, limit: int | None = None, test_mode: bool = False) -> RunSummary:
    """Run the pipeline for one source only."""

    orchestrator = _orchestrator_or_500()
    try:
        return await run_in_threadpool(orchestrator.run_crawl_source, source, limit, test_mode)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown source: {source}") from exc
    except Exception as exc:  # noqa: BLE001 - surface any pipeline failure to the caller
        logger.exception("Crawl of %s failed", source)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/crawl/latest")
async def retrieve_latest_crawl() -> Dict[str, Any]:
    """Return the audit artefact written by the most recent crawl."""

    audit = load_latest_audit()
    if audit is None:
        raise HTTPException(status_code=404, detail="No crawl has been recorded yet.")
    return audit


@router.post("/events/status-cleanup", response_model=StatusRepairSummary)
async def trigger_status_cleanup() -> StatusRepairSummary:
    """Advance stored event statuses whose start or end time has passed."""

    try:
        return await run_in_threadpool(EventStatusRepair(build_sink()).run)
    except Exception as exc:  # noqa: BLE001 - surface storage failures to the caller
        logger.exception("Status cleanup failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/llm/health", response_model=RuntimeHealth)
async def llm_health() -> RuntimeHealth:
    client = ModelRuntimeClient(LLMSettings.from_env())
    return await run_in_threadpool(client.health)
