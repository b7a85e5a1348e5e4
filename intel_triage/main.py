"""Application entrypoint for the PIR intelligence triage pipeline.

This script wires the high-level flow:
1) load configuration (.env, YAML sources/PIRs/proxies, runtime settings)
2) ingest feeds and optional CSV uploads into the processing queue
3) classify queued items and hand relevant ones to analyst review
"""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

from dotenv import load_dotenv

from .errors import ParseError
from .orchestrator import Pipeline
from .utils.config_loader import ConfigError, LoadedConfig, load_pipeline_config
from .utils.logging import configure_logging, get_logger
from .utils.pipeline_config import PipelineConfig

DEFAULT_CONFIG = Path("config/pipeline.yaml")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="PIR triage pipeline: fetch feeds, deduplicate, classify and queue for review"
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to pipeline configuration file (YAML, default: {DEFAULT_CONFIG} if present)",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="SQLAlchemy database URL (overrides TRIAGE_DB_URL and the config file)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: LOG_LEVEL env or INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Refresh all feeds once, classify what is ready and exit",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of classification worker threads",
    )
    parser.add_argument(
        "--run-seconds",
        type=float,
        default=0,
        help="Stop the long-running pipeline after this many seconds (0 = until interrupted)",
    )
    parser.add_argument(
        "--csv",
        action="append",
        default=[],
        metavar="PATH",
        help="Ingest a CSV upload before running (may be repeated)",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print feed and queue status as JSON and exit",
    )
    return parser.parse_args()


def main() -> int:
    load_dotenv(override=False)
    args = parse_args()
    configure_logging(level=args.log_level)
    logger = get_logger("triage.main")

    config_path = Path(args.config) if args.config else DEFAULT_CONFIG
    loaded = LoadedConfig()
    if args.config or config_path.exists():
        logger.info("Loading pipeline configuration from %s", config_path)
        try:
            loaded = load_pipeline_config(config_path)
        except ConfigError as exc:
            logger.error("Failed to load configuration: %s", exc)
            return 1
    else:
        logger.info("No configuration file; running with defaults and existing database state")

    config = PipelineConfig().update(loaded.settings)
    if args.db_url:
        config.db_url = args.db_url
    if args.workers is not None:
        config.workers = args.workers

    pipeline = Pipeline.from_config(config, loaded)

    for csv_path in args.csv:
        try:
            text = Path(csv_path).read_text(encoding="utf-8")
            report = pipeline.ingestor.ingest_csv(text, label=Path(csv_path).name)
        except (OSError, ParseError) as exc:
            logger.error("CSV upload %s rejected: %s", csv_path, exc)
            continue
        logger.info("CSV %s: created=%d duplicates=%d", csv_path, report.created, report.duplicates)

    if args.status:
        print(json.dumps(pipeline.status(), indent=2, default=str))
        return 0

    if args.once:
        pipeline.run_once()
        return 0

    pipeline.start()
    started = time.monotonic()
    try:
        while not args.run_seconds or time.monotonic() - started < args.run_seconds:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        pipeline.stop()
    return 0


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    raise SystemExit(main())
