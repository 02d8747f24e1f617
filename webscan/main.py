from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from webscan.aggregator import ResultAggregator
from webscan.annotator import ChatCompletionAnnotator, build_annotator
from webscan.detectors.base import ProbeClient
from webscan.fetcher import TargetFetcher
from webscan.models import ScanProfile, ScanStatus, utc_now_iso
from webscan.orchestrator import ScanOrchestrator
from webscan.progress import ProgressPublisher
from webscan.queue import JobQueue
from webscan.registry import DetectorRegistry, default_registry
from webscan.service import ScanRequest, ScanService
from webscan.settings import load_yaml, resolve_settings, setup_logging
from webscan.storage import ScanStore
from webscan.worker import WorkerPool

LOGGER = logging.getLogger(__name__)


@dataclass
class Engine:
    store: ScanStore
    queue: JobQueue
    registry: DetectorRegistry
    fetcher: TargetFetcher
    probe: ProbeClient
    publisher: ProgressPublisher
    orchestrator: ScanOrchestrator
    pool: WorkerPool
    service: ScanService
    annotator: ChatCompletionAnnotator | None = None

    def close(self) -> None:
        self.pool.stop(wait=False)
        self.queue.close()
        self.fetcher.close()
        self.probe.close()
        if self.annotator is not None:
            self.annotator.close()


def build_engine(settings: dict[str, Any]) -> Engine:
    store = ScanStore(settings["paths"]["db_path"])
    store.init_db()

    queue_settings = settings["queue"]
    queue = JobQueue(
        attempts=int(queue_settings["attempts"]),
        backoff_seconds=float(queue_settings["backoff_seconds"]),
        keep_completed_count=int(queue_settings["keep_completed_count"]),
        keep_completed_seconds=float(queue_settings["keep_completed_seconds"]),
        keep_failed_seconds=float(queue_settings["keep_failed_seconds"]),
    )

    http = settings["http"]
    fetcher = TargetFetcher(timeout=float(http["fetch_timeout_seconds"]), user_agent=http["user_agent"])
    probe = ProbeClient(timeout=float(http["probe_timeout_seconds"]), user_agent=http["user_agent"])
    registry = default_registry(probe, ssrf_timeout=float(http["ssrf_timeout_seconds"]))

    publisher = ProgressPublisher(store)
    annotator = build_annotator(settings)
    orchestrator = ScanOrchestrator(
        store=store,
        registry=registry,
        fetcher=fetcher,
        aggregator=ResultAggregator(store, excerpt_limit=int(settings["scan"]["excerpt_limit"])),
        publisher=publisher,
        annotator=annotator,
        cancel_check_interval=int(settings["scan"]["cancel_check_interval"]),
    )
    pool = WorkerPool(
        queue,
        orchestrator,
        concurrency=int(settings["workers"]["concurrency"]),
        poll_interval=float(settings["workers"]["poll_interval_seconds"]),
    )
    return Engine(
        store=store,
        queue=queue,
        registry=registry,
        fetcher=fetcher,
        probe=probe,
        publisher=publisher,
        orchestrator=orchestrator,
        pool=pool,
        service=ScanService(store, queue),
        annotator=annotator,
    )


def resolve_targets(args: argparse.Namespace) -> list[ScanRequest]:
    detectors = [name.strip() for name in (args.detectors or "").split(",") if name.strip()]
    if args.targets_file:
        data = load_yaml(args.targets_file)
        requests = []
        for item in data.get("targets", []):
            if not item.get("enabled", True):
                continue
            payload = {
                "project_id": item.get("project_id") or args.project_id,
                "url": item.get("url"),
                "profile": item.get("profile") or args.profile,
                "detectors": item.get("detectors") or detectors,
            }
            requests.append(ScanRequest.model_validate(payload))
        return requests

    if not args.url:
        raise ValueError("Either --targets-file or --url is required")
    return [ScanRequest(project_id=args.project_id, url=args.url, profile=args.profile, detectors=detectors)]


def write_json_file(path: str | Path, payload: dict | list) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)


def run_scans(engine: Engine, requests: list[ScanRequest], timeout: float | None = None) -> tuple[list[dict[str, Any]], int]:
    job_ids = [engine.service.submit(request).id for request in requests]
    engine.pool.start()
    settled = engine.queue.join(timeout)
    if not settled:
        LOGGER.error("Timed out waiting for %s scan(s) to settle", len(job_ids))

    results: list[dict[str, Any]] = []
    overall_exit = 0 if settled else 4
    for job_id in job_ids:
        job = engine.store.get_job(job_id)
        payload = job.to_dict()
        payload["findings"] = [finding.to_dict() for finding in engine.store.list_findings(job_id)]
        results.append(payload)
        if job.status is not ScanStatus.COMPLETED:
            overall_exit = 4
    return results, overall_exit


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Web application vulnerability scan engine")
    parser.add_argument("--url", help="Target URL to scan")
    parser.add_argument("--targets-file", help="YAML file with multiple targets")
    parser.add_argument("--project-id", default="default", help="Project the scans belong to")
    parser.add_argument("--profile", choices=[item.value for item in ScanProfile], default=ScanProfile.FULL.value, help="Scan profile")
    parser.add_argument("--detectors", help="Comma-separated detector names for the custom profile")
    parser.add_argument("--settings", default="/app/config/settings.yaml", help="Path to settings YAML")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level")
    parser.add_argument("--json-output", help="Optional path for aggregate JSON output")
    parser.add_argument("--workers", type=int, help="Override worker concurrency")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for all scans before giving up")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    settings = resolve_settings(args.settings)
    if args.workers:
        settings["workers"]["concurrency"] = args.workers

    try:
        requests = resolve_targets(args)
    except (ValueError, ValidationError, OSError) as exc:
        LOGGER.error("Invalid arguments: %s", exc)
        return 2
    if not requests:
        LOGGER.error("Invalid arguments: no enabled targets")
        return 2

    engine = build_engine(settings)
    try:
        results, overall_exit = run_scans(engine, requests, timeout=args.timeout)
    finally:
        engine.close()

    payload = {"results": results, "generated_at": utc_now_iso()}
    if args.json_output:
        write_json_file(args.json_output, payload)
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return overall_exit


if __name__ == "__main__":
    sys.exit(main())
