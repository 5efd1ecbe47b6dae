#!/usr/bin/env python3
# CLI entry point for Fora
# Runs lifecycle activations outside the web process (cron, local testing)

import argparse
import asyncio
import json
import signal
import sys

from fora.config import settings
from fora.database import init_db
from fora.logging_config import configure_logging
from fora.services.archival import get_sweep
from fora.services.errors import JobValidationError
from fora.services.job_service import JobService
from fora.services.job_worker import WorkerScheduler, get_worker


async def create_job(owner: int, prompt: str, image_url: str | None) -> int:
    try:
        job = await JobService().create_job(owner, prompt, input_reference=image_url)
    except JobValidationError as e:
        print(f"Error: {e}")
        return 1
    print(json.dumps({"jobId": job.id, "status": job.status.value}))
    return 0


async def process_pending() -> int:
    result = await get_worker().process_one_pending_job()
    print(json.dumps({"outcome": result.outcome, "jobId": result.job_id, "error": result.error}))
    return 0 if result.outcome != "failed" else 1


async def cleanup() -> int:
    result = await get_sweep().run()
    print(
        json.dumps(
            {
                "archived": result.archived,
                "deleted": result.deleted,
                "deleteFailures": result.delete_failures,
            }
        )
    )
    return 0


async def run_worker(interval: float) -> int:
    """Poll for pending jobs until SIGINT/SIGTERM."""
    scheduler = WorkerScheduler(get_worker(), interval=interval)
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    await stop.wait()
    await scheduler.stop()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fora job lifecycle tools",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create-job", help="Submit a test job")
    p_create.add_argument("fid", type=int, help="Owner Farcaster ID")
    p_create.add_argument(
        "--prompt",
        default="Test PFP animation",
        help="Prompt text (default: %(default)s)",
    )
    p_create.add_argument("--image-url", help="Source image URL or local path")

    sub.add_parser("process-pending", help="Run one generation worker activation")
    sub.add_parser("cleanup", help="Run one archival sweep")

    p_worker = sub.add_parser("worker", help="Run the polling worker until interrupted")
    p_worker.add_argument(
        "--interval",
        type=float,
        default=settings.worker_poll_interval_seconds,
        help="Seconds between activations (default: %(default)s)",
    )

    args = parser.parse_args()

    configure_logging(settings.log_level)
    init_db()

    if args.command == "create-job":
        code = asyncio.run(create_job(args.fid, args.prompt, args.image_url))
    elif args.command == "process-pending":
        code = asyncio.run(process_pending())
    elif args.command == "cleanup":
        code = asyncio.run(cleanup())
    else:
        code = asyncio.run(run_worker(args.interval))

    sys.exit(code)


if __name__ == "__main__":
    main()
