from __future__ import annotations

import argparse
import asyncio
import logging
import os

from syncwatch.backend.client import DatasetApiClient
from syncwatch.core.config import get_settings
from syncwatch.core.logging import configure_logging
from syncwatch.monitor.progress import estimate
from syncwatch.monitor.service import SyncMonitor
from syncwatch.monitor.types import JobStatus, SyncNotification

logger = logging.getLogger("watch_datasets")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch dataset sync jobs and optionally trigger some")
    parser.add_argument("--base-url", help="Dataset API base URL (overrides SYNCWATCH_BACKEND_BASE_URL)")
    parser.add_argument("--token", help="Bearer token for the dataset API")
    parser.add_argument("--trigger", action="append", default=[], metavar="DATASET_ID", help="Dataset to sync, repeatable")
    parser.add_argument("--duration", type=float, default=300.0, help="Seconds to keep watching")
    parser.add_argument("--log-level", default=None, help="Log level (defaults to SYNCWATCH_LOG_LEVEL)")
    return parser.parse_args()


def configure_env(args: argparse.Namespace) -> None:
    if args.base_url:
        os.environ["SYNCWATCH_BACKEND_BASE_URL"] = args.base_url
    if args.token:
        os.environ["SYNCWATCH_BACKEND_API_TOKEN"] = args.token
    if args.log_level:
        os.environ["SYNCWATCH_LOG_LEVEL"] = args.log_level
    get_settings.cache_clear()


def log_status(dataset_id: str, status: JobStatus) -> None:
    if status.started_at is None:
        logger.info("%s: %s", dataset_id, status.state.value)
        return
    progress = estimate(status, status.last_observed_at or status.started_at)
    eta = f"{progress.eta_seconds:.0f}s" if progress.eta_seconds is not None else "unknown"
    logger.info(
        "%s: %s %s%% (%s/%s, %.1f rec/s, eta %s)",
        dataset_id,
        status.state.value,
        progress.percent,
        status.processed,
        status.total_to_process,
        progress.throughput,
        eta,
    )


def log_notification(notification: SyncNotification) -> None:
    logger.info(
        "%s: %s%s",
        notification.dataset_id,
        notification.kind.value,
        f" ({notification.message})" if notification.message else "",
    )


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    async with DatasetApiClient(settings) as client:
        async with SyncMonitor(settings, client) as monitor:
            monitor.on_status_change(log_status)
            monitor.on_terminal(log_notification)
            for dataset_id in args.trigger:
                result = await monitor.request_trigger(dataset_id)
                logger.info("Trigger %s: %s%s", dataset_id, result.outcome.value, f" ({result.message})" if result.message else "")
            await monitor.sweep.tick()
            await asyncio.sleep(args.duration)


def main() -> None:
    args = parse_args()
    configure_env(args)
    configure_logging(get_settings().log_level)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
