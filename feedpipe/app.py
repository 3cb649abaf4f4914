from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
from dataclasses import asdict
from datetime import timedelta
from functools import cached_property
from typing import Any

import schedule
from flask import Flask
from flask_cors import CORS

from feedpipe.api.routes import api
from feedpipe.config.logging import setup_logging
from feedpipe.config.settings import Settings, load_settings
from feedpipe.errors import RankingPayloadError, StoreError
from feedpipe.fetchers.youtube_fetcher import TranscriptFetcher, YouTubeStatsFetcher
from feedpipe.metrics.collector import MetricsCollector
from feedpipe.metrics.history import MetricsHistory
from feedpipe.pipeline.ingest import ingest_records, load_crawler_file
from feedpipe.pipeline.state_machine import StatusStateMachine
from feedpipe.processors.analysis import AnalysisInvoker
from feedpipe.processors.extraction import ExtractionChain
from feedpipe.processors.reasoning import ReasoningClient
from feedpipe.publishers.content_publisher import ContentPublisher
from feedpipe.ranking.merger import ranking_to_dict
from feedpipe.ranking.service import RankingService
from feedpipe.storage.database import Database
from feedpipe.utils.retry import RetryController

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FATAL = 2


class Pipeline:
    """Explicit handles for one process. Remote clients are created on
    first use so store-only commands never touch the network."""

    def __init__(self, settings: Settings, database: Database) -> None:
        self.settings = settings
        self.database = database

    @cached_property
    def reasoning(self) -> ReasoningClient:
        return ReasoningClient(
            api_key=self.settings.gemini_api_key, model=self.settings.reasoning_model
        )

    @cached_property
    def retry(self) -> RetryController:
        return RetryController.from_settings(self.settings)

    @cached_property
    def state_machine(self) -> StatusStateMachine:
        extraction = ExtractionChain(
            self.reasoning,
            self.retry,
            transcripts=TranscriptFetcher(),
            screenshot_root=self.settings.screenshot_root,
            transcript_languages=self.settings.transcript_languages,
        )
        return StatusStateMachine(
            self.database,
            extraction,
            AnalysisInvoker(self.reasoning, self.retry),
            inter_item_delay=self.settings.inter_item_delay,
        )

    @cached_property
    def publisher(self) -> ContentPublisher:
        return ContentPublisher(self.database)

    @cached_property
    def rankings(self) -> RankingService:
        return RankingService(self.database)

    @cached_property
    def history(self) -> MetricsHistory:
        return MetricsHistory(self.database)

    @cached_property
    def collector(self) -> MetricsCollector:
        youtube = None
        if self.settings.youtube_api_key:
            try:
                youtube = YouTubeStatsFetcher(self.settings.youtube_api_key)
            except Exception as exc:
                logger.error("YouTube stats client init failed, using stored metrics: %s", exc)
        return MetricsCollector(
            self.database,
            self.history,
            platforms=self.settings.metrics_platforms,
            days=self.settings.metrics_days,
            youtube=youtube,
            delay=self.settings.metrics_collect_delay,
        )


def create_flask_app(pipeline: Pipeline) -> Flask:
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})

    app.config["SETTINGS"] = pipeline.settings
    app.config["DATABASE"] = pipeline.database
    app.config["HISTORY"] = pipeline.history

    app.register_blueprint(api)
    return app


def run_scheduled_cycle(pipeline: Pipeline) -> None:
    try:
        pipeline.state_machine.recover_stuck(
            timedelta(minutes=pipeline.settings.stuck_after_minutes)
        )
        pipeline.state_machine.run_pass()
        pipeline.publisher.publish_ready(min_score=pipeline.settings.auto_publish_min_score)
    except Exception as exc:
        logger.error("Scheduled cycle failed: %s", exc)


def run_scheduled_metrics(pipeline: Pipeline) -> None:
    try:
        pipeline.collector.collect()
    except Exception as exc:
        logger.error("Scheduled metrics collection failed: %s", exc)


def run_scheduler(pipeline: Pipeline, poll_seconds: float = 60) -> None:
    settings = pipeline.settings
    schedule.every(settings.schedule_interval_minutes).minutes.do(run_scheduled_cycle, pipeline)
    for at in settings.metrics_collect_times:
        schedule.every().day.at(at).do(run_scheduled_metrics, pipeline)

    logger.info(
        "Scheduler started: analysis every %d min, metrics at %s",
        settings.schedule_interval_minutes, ", ".join(settings.metrics_collect_times),
    )

    while True:
        try:
            schedule.run_pending()
        except Exception as exc:
            logger.error("Scheduler error: %s", exc)
        time.sleep(poll_seconds)


def run_server(pipeline: Pipeline) -> None:
    from wsgiref.simple_server import make_server

    app = create_flask_app(pipeline)
    host, port = pipeline.settings.api_host, pipeline.settings.api_port
    server = make_server(host, port, app)
    logger.info("Flask server starting on http://%s:%d", host, port)
    server.serve_forever()


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedpipe",
        description="Analyze, publish, rank and measure crawled social content.",
    )
    parser.add_argument("--log-level", help="Logging level (default: $FEEDPIPE_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    dry = argparse.ArgumentParser(add_help=False)
    dry.add_argument("--dry-run", action="store_true", help="Log intended writes without applying them")

    p = sub.add_parser("ingest", parents=[dry], help="Load crawler records from a JSON file")
    p.add_argument("file")

    p = sub.add_parser("analyze", parents=[dry], help="Run extraction and analysis on pending records")
    p.add_argument("--platform")
    p.add_argument("--limit", type=int)

    p = sub.add_parser("publish", parents=[dry], help="Publish the given ready records")
    p.add_argument("ids", nargs="+")

    p = sub.add_parser("publish-ready", parents=[dry], help="Publish every ready record above a score")
    p.add_argument("--platform")
    p.add_argument("--min-score", type=int)

    p = sub.add_parser("rank", parents=[dry], help="Merge a ranking observation into a content item")
    p.add_argument("content_id")
    p.add_argument("payload", help='JSON object, e.g. \'{"weekly": 3, "python": {"daily": 1}}\'')

    sub.add_parser("collect-metrics", parents=[dry], help="Snapshot metrics of recently published items")

    p = sub.add_parser("metrics", help="Show metrics history and trend stats")
    p.add_argument("content_id")
    p.add_argument("--days", type=int, default=7)
    p.add_argument("--limit", type=int, default=100)

    p = sub.add_parser("requeue-failed", parents=[dry], help="Return analysis_failed records to the queue")
    p.add_argument("--platform")

    p = sub.add_parser("recover-stuck", parents=[dry], help="Reset records stuck in processing")
    p.add_argument("--minutes", type=int, help="Override stuck_after_minutes")

    sub.add_parser("schedule", help="Run analysis, publishing and metrics on a schedule")
    sub.add_parser("serve", help="Serve the metrics/status HTTP API")
    return parser


def dispatch(args: argparse.Namespace, pipeline: Pipeline) -> int:
    command = args.command
    dry_run = getattr(args, "dry_run", False)

    if command == "ingest":
        try:
            payloads = load_crawler_file(args.file)
        except (OSError, ValueError) as exc:
            logger.error("Cannot read crawler file %s: %s", args.file, exc)
            return EXIT_ERROR
        _print(asdict(ingest_records(pipeline.database, payloads, dry_run=dry_run)))
    elif command == "analyze":
        summary = pipeline.state_machine.run_pass(
            platform=args.platform, limit=args.limit, dry_run=dry_run
        )
        _print({**asdict(summary), "average_score": summary.average_score})
    elif command == "publish":
        _print(asdict(pipeline.publisher.publish(args.ids, dry_run=dry_run)))
    elif command == "publish-ready":
        min_score = args.min_score
        if min_score is None:
            min_score = pipeline.settings.auto_publish_min_score
        _print(asdict(pipeline.publisher.publish_ready(
            platform=args.platform, min_score=min_score, dry_run=dry_run
        )))
    elif command == "rank":
        try:
            observation = json.loads(args.payload)
            if not isinstance(observation, dict):
                raise RankingPayloadError("ranking payload must be a JSON object")
            merged = pipeline.rankings.apply(args.content_id, observation, dry_run=dry_run)
        except (json.JSONDecodeError, RankingPayloadError) as exc:
            logger.error("Invalid ranking payload: %s", exc)
            return EXIT_ERROR
        _print(ranking_to_dict(merged))
    elif command == "collect-metrics":
        _print(asdict(pipeline.collector.collect(dry_run=dry_run)))
    elif command == "metrics":
        _print(pipeline.history.history_report(args.content_id, days=args.days, limit=args.limit))
    elif command == "requeue-failed":
        _print({"requeued": pipeline.state_machine.requeue_failed(platform=args.platform, dry_run=dry_run)})
    elif command == "recover-stuck":
        minutes = args.minutes if args.minutes is not None else pipeline.settings.stuck_after_minutes
        recovered = pipeline.state_machine.recover_stuck(timedelta(minutes=minutes), dry_run=dry_run)
        _print({"recovered": recovered})
    elif command == "schedule":
        run_scheduler(pipeline)
    elif command == "serve":
        run_server(pipeline)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = load_settings()
        database = Database(settings.database_path)
    except (EnvironmentError, StoreError) as exc:
        logger.error("Cannot start: %s", exc)
        return EXIT_FATAL

    def _shutdown(sig: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down...", sig)
        database.close()
        sys.exit(0)

    signal.signal(signal.SIGTERM, _shutdown)

    try:
        return dispatch(args, Pipeline(settings, database))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_ERROR
    finally:
        database.close()


if __name__ == "__main__":
    sys.exit(main())
