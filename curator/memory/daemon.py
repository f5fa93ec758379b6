"""
Memory Daemon — guarded passes and background polling.

Wraps a Pipeline with a re-entrancy guard: only one pass runs at a time
within the process, and a request that arrives mid-pass is answered with
``already_processing`` rather than queued. A poll loop triggers a pass when
the daemon is idle and sessions are waiting.

Usage:
    from curator.memory.daemon import MemoryDaemon

    daemon = MemoryDaemon(Pipeline.from_config())
    await daemon.start()

    result = await daemon.process()   # on demand

    await daemon.stop()

CLI:
    curated-context --capture <session_id> <transcript.jsonl>
    curated-context --once
    curated-context              # poll until SIGTERM/SIGINT
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import time
from pathlib import Path
from typing import Any

from curator.config import load_config
from curator.logging_config import get_logger, setup_logging
from curator.memory.pipeline import Pipeline
from curator.memory.queue import SessionQueue

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


class MemoryDaemon:
    """Owns the processing flag, the poll task and running totals."""

    def __init__(self, pipeline: Pipeline, poll_interval: float | None = None):
        self.pipeline = pipeline
        self.poll_interval = poll_interval or pipeline.config.daemon.poll_interval_seconds or DEFAULT_POLL_INTERVAL
        self._processing = False
        self._running = False
        self._task: asyncio.Task | None = None
        self._started_at: float | None = None

        self._last_processed: float | None = None
        self._total_processed = 0
        self._total_failed = 0
        self._total_inference_calls = 0

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def process(self) -> dict[str, Any]:
        """
        Run one pass unless one is already in flight.

        Returns:
            {"status": "already_processing"}, {"status": "ok", "stats": {...}},
            or {"status": "error", "message": ...}
        """
        if self._processing:
            return {"status": "already_processing"}

        self._processing = True
        try:
            stats = await self.pipeline.process_queue()
        except Exception as e:
            logger.error("pass_failed", error=f"{type(e).__name__}: {e}")
            return {"status": "error", "message": str(e)}
        finally:
            self._processing = False

        self._last_processed = time.time()
        self._total_processed += stats.sessions_processed
        self._total_failed += stats.sessions_failed
        self._total_inference_calls += stats.inference_calls
        return {"status": "ok", "stats": stats.to_dict()}

    async def start(self) -> None:
        if self._running:
            logger.warning("daemon_already_running")
            return

        self._running = True
        self._started_at = time.time()
        self.pipeline.queue.ensure_directories()
        self._task = asyncio.create_task(self._poll_loop(), name="curator_poll")
        logger.info("daemon_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        logger.info("daemon_stopped", total_processed=self._total_processed)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.poll_interval)
                if not self._running:
                    break
                if self._processing or self.pipeline.queue.depth() == 0:
                    continue
                await self.process()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("poll_error", error=str(e))

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "uptime_seconds": int(time.time() - self._started_at) if self._started_at else 0,
            "queue_depth": self.pipeline.queue.depth(),
            "last_processed": self._last_processed,
            "total_processed": self._total_processed,
            "total_failed": self._total_failed,
            "total_inference_calls": self._total_inference_calls,
            "is_processing": self._processing,
        }


async def run_daemon(daemon: MemoryDaemon) -> None:
    """Run the poll loop until SIGTERM or SIGINT."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    await daemon.start()
    try:
        await stop_event.wait()
    finally:
        await daemon.stop()


# =============================================================================
# CLI Interface
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="curated-context", description="Curated context memory daemon")
    parser.add_argument("--config", type=Path, default=None, help="Path to curator.yaml")
    parser.add_argument("--once", action="store_true", help="Process the queue once and exit")
    parser.add_argument(
        "--capture", nargs=2, metavar=("SESSION_ID", "TRANSCRIPT"), help="Queue a session transcript"
    )
    parser.add_argument("--status", action="store_true", help="Print queue depth as JSON")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    polling = not (args.capture or args.status or args.once)
    setup_logging(log_file=config.log_path if polling else None)

    if args.capture:
        session_id, transcript = args.capture
        record = SessionQueue.from_config(config).capture(session_id, transcript)
        print(json.dumps({"queued": record is not None}))
        return 0

    if args.status:
        print(json.dumps({"queue_depth": SessionQueue.from_config(config).depth()}))
        return 0

    daemon = MemoryDaemon(Pipeline.from_config(config))

    if args.once:
        result = asyncio.run(daemon.process())
        print(json.dumps(result, indent=2))
        return 0 if result["status"] != "error" else 1

    asyncio.run(run_daemon(daemon))
    return 0


if __name__ == "__main__":
    sys.exit(main())
