"""
Scheduled Contact Runner
Background worker that periodically contacts due leads

Run as separate process:
    python -m agent_runtime.workers.scheduled_contact_runner
"""
import asyncio
import logging
import signal
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from agent_runtime.core.context import RuntimeContext
from agent_runtime.domain.models.lead import utcnow
from agent_runtime.services.workflow_orchestrator import ScheduledContactReport, WorkflowOrchestrator

logger = logging.getLogger(__name__)


class ScheduledContactRunner:
    """
    Periodic driver for `WorkflowOrchestrator.run_scheduled_contacts`.

    Responsibilities:
    - Skip whole ticks inside quiet hours
    - Run one tick at a time; a tick finishes before the next is scheduled
    - Back off on consecutive errors and stop after too many
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        context: RuntimeContext,
        orchestrator: WorkflowOrchestrator,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        self.context = context
        self.orchestrator = orchestrator
        self.on_error = on_error
        self.POLL_INTERVAL = context.settings.workflow.scheduler_interval_seconds

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

        # Stats
        self._ticks = 0
        self._ticks_skipped = 0
        self._messages_sent = 0
        self._messages_failed = 0
        self._leads_exhausted = 0
        self._last_run_at: Optional[datetime] = None
        self._last_report: Optional[ScheduledContactReport] = None

    async def run_once(self, now: Optional[datetime] = None) -> Optional[ScheduledContactReport]:
        """
        Run a single tick.

        Returns:
            The tick's report, or None if it was skipped for quiet hours
        """
        now = now or utcnow()
        self._last_run_at = now

        if self.context.quiet_hours.is_active(now):
            self._ticks_skipped += 1
            logger.debug(f"Quiet hours in effect at {now.isoformat()}, skipping tick")
            return None

        report = await self.orchestrator.run_scheduled_contacts(now)

        self._ticks += 1
        self._messages_sent += report.sent
        self._messages_failed += report.failed
        self._leads_exhausted += report.exhausted
        self._last_report = report
        return report

    async def run(self) -> None:
        """
        Main worker loop.

        Runs ticks every POLL_INTERVAL seconds until `shutdown` is called,
        the task is cancelled, or too many ticks fail in a row.
        """
        self.running = True
        self._stop_event = asyncio.Event()
        consecutive_errors = 0

        logger.info(f"Scheduled Contact Runner started (interval {self.POLL_INTERVAL}s)")

        while self.running:
            try:
                await self.run_once()
                consecutive_errors = 0
                delay = self.POLL_INTERVAL

            except asyncio.CancelledError:
                logger.info("Runner received cancellation signal")
                self.running = False
                raise
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Runner error ({consecutive_errors}): {e}", exc_info=True)
                if self.on_error:
                    self.on_error(e)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping runner")
                    break

                delay = min(5 * consecutive_errors, 60)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.running = False
        logger.info("Scheduled Contact Runner stopped")

    def shutdown(self) -> None:
        """Ask the loop to exit after the current tick."""
        logger.info("Shutting down Scheduled Contact Runner...")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

        logger.info(
            f"Runner totals: ticks={self._ticks}, skipped={self._ticks_skipped}, "
            f"sent={self._messages_sent}, failed={self._messages_failed}"
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get runner statistics."""
        return {
            "running": self.running,
            "interval_seconds": self.POLL_INTERVAL,
            "ticks": self._ticks,
            "ticks_skipped": self._ticks_skipped,
            "messages_sent": self._messages_sent,
            "messages_failed": self._messages_failed,
            "leads_exhausted": self._leads_exhausted,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }


async def main():
    """Entry point for running the scheduled contact runner as a separate process."""
    from dotenv import load_dotenv

    from agent_runtime.core.config import load_settings
    from agent_runtime.core.context import build_context

    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    context = build_context(load_settings())
    runner = ScheduledContactRunner(context, WorkflowOrchestrator(context))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        runner.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await runner.run()
    except KeyboardInterrupt:
        logger.info("Runner interrupted by user")
    finally:
        await context.classifier.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
