"""Run one crawl pass (or a status cleanup) from the command line."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the eventcrawler package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from eventcrawler.config import AppConfig, LLMSettings  # noqa: E402  (import after path setup)
from eventcrawler.services.orchestrator import CrawlOrchestrator  # noqa: E402
from eventcrawler.services.sink import JsonFileEventSink  # noqa: E402
from eventcrawler.services.status_cleanup import EventStatusRepair  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl Meetup and Luma for upcoming events.")
    parser.add_argument("--limit", type=int, default=None, help="maximum events per source")
    parser.add_argument("--source", default=None, help="crawl only this source (e.g. meetup)")
    parser.add_argument("--test-mode", action="store_true", help="skip the import and print accepted events")
    parser.add_argument("--config", type=Path, default=None, help="path to sources.json")
    parser.add_argument(
        "--status-cleanup", action="store_true", help="advance stored event statuses instead of crawling"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Load the source configuration and run the requested job."""

    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    sink = JsonFileEventSink()

    if args.status_cleanup:
        summary = EventStatusRepair(sink).run()
        print(json.dumps(summary.model_dump(), indent=2))
        return

    try:
        config = AppConfig.from_file(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Could not load source configuration: %s", exc)
        sys.exit(1)

    orchestrator = CrawlOrchestrator.from_config(config, LLMSettings.from_env(), sink)
    try:
        if args.source:
            result = orchestrator.run_crawl_source(args.source, args.limit, args.test_mode)
        else:
            result = orchestrator.run_crawl(args.limit, args.test_mode)
    except KeyError:
        logging.error("Unknown source: %s", args.source)
        sys.exit(1)
    except Exception:  # noqa: BLE001 - report and exit non-zero
        logging.exception("Crawl failed")
        sys.exit(1)

    print(json.dumps(result.model_dump(mode="json", exclude={"events": {"__all__": {"raw_data"}}}), indent=2))


if __name__ == "__main__":
    main()
