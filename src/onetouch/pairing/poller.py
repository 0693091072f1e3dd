"""Initiator-side status polling.

Polls a session's status at a fixed cadence until it reaches a terminal
state or the caller stops it. The server keeps no per-poller state, so
stopping is purely local.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from onetouch.errors import (
    SessionNotFoundError,
    TransientError,
    ValidationError,
)
from onetouch.pairing.session import StatusReport

logger = logging.getLogger(__name__)

FetchStatus = Callable[[str], Awaitable[StatusReport]]
StatusCallback = Callable[[StatusReport], Awaitable[None]]
TerminalPredicate = Callable[[StatusReport], bool]


def _default_is_terminal(report: StatusReport) -> bool:
    return report.is_terminal


class StatusPoller:
    """Polls ``fetch_status(code)`` until a terminal status.

    At most one poll is in flight. A tick that fires while the previous
    poll is still running is skipped; polls are idempotent, so a skipped
    tick only delays observation by one interval.

    Usage:
        poller = StatusPoller(client.get_status, code, interval=1.0)
        await poller.start()
        report = await poller.wait()   # terminal report, or None
        await poller.stop()
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        code: str,
        interval: float = 1.0,
        on_status: Optional[StatusCallback] = None,
        is_terminal: Optional[TerminalPredicate] = None,
    ):
        """Initialize poller.

        Args:
            fetch_status: Async status query (service or HTTP client).
            code: Session code to watch.
            interval: Seconds between ticks.
            on_status: Async callback fired whenever the observed status changes.
            is_terminal: Predicate ending the poll; defaults to claimed/expired.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._fetch = fetch_status
        self._code = code
        self._interval = interval
        self._on_status = on_status
        self._is_terminal = is_terminal or _default_is_terminal

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._done = asyncio.Event()
        self._last_report: Optional[StatusReport] = None
        self._terminal_report: Optional[StatusReport] = None
        self._error: Optional[Exception] = None
        self.polls = 0
        self.skipped_ticks = 0

    @property
    def code(self) -> str:
        return self._code

    @property
    def is_running(self) -> bool:
        """Whether polling is active."""
        return self._running

    @property
    def last_report(self) -> Optional[StatusReport]:
        """Most recent successfully fetched status."""
        return self._last_report

    @property
    def error(self) -> Optional[Exception]:
        """Non-transient error that ended polling, e.g. an unknown code."""
        return self._error

    async def __aenter__(self) -> "StatusPoller":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def start(self) -> None:
        """Start polling. The first poll is issued immediately."""
        if self._running:
            return

        self._running = True
        self._done.clear()
        self._terminal_report = None
        self._error = None
        self._task = asyncio.create_task(self._tick_loop())
        logger.debug(f"Status poller started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop polling.

        Cancels the ticker and any in-flight poll. Once this returns no
        further status requests are issued.
        """
        self._running = False
        current = asyncio.current_task()
        tasks = [t for t in (self._task, self._inflight) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._inflight = None
        self._done.set()
        logger.debug("Status poller stopped")

    async def wait(self) -> Optional[StatusReport]:
        """Wait until polling ends.

        Returns immediately when polling is not running, including on a
        poller that was never started.

        Returns:
            The terminal report, or None if stopped early, never started,
            or ended by an error (see ``error``).
        """
        if not self._running:
            return self._terminal_report
        await self._done.wait()
        return self._terminal_report

    async def _tick_loop(self) -> None:
        """Issue a poll every interval, skipping ticks while one is in flight."""
        while self._running:
            if self._inflight is not None and not self._inflight.done():
                self.skipped_ticks += 1
                logger.debug("Previous status poll still in flight, skipping tick")
            else:
                self._inflight = asyncio.create_task(self._poll())
            await asyncio.sleep(self._interval)

    async def _poll(self) -> None:
        """Run one status query and act on the result."""
        self.polls += 1
        try:
            report = await self._fetch(self._code)
        except (SessionNotFoundError, ValidationError) as e:
            logger.warning(f"Status poll rejected, stopping: {e.__class__.__name__}")
            self._error = e
            self._finish(None)
            return
        except (TransientError, asyncio.TimeoutError) as e:
            logger.warning(f"Status poll failed, retrying next tick: {e}")
            return
        except Exception as e:
            logger.error(f"Status poll failed unexpectedly, stopping: {e!r}")
            self._error = e
            self._finish(None)
            return

        if not self._running:
            return

        if report != self._last_report:
            self._last_report = report
            logger.debug(f"Observed status {report.status.value}")
            if self._on_status:
                try:
                    await self._on_status(report)
                except Exception as e:
                    logger.error(f"Status callback failed: {e}")

        if self._is_terminal(report):
            logger.info(f"Pairing session reached {report.status.value}")
            self._finish(report)

    def _finish(self, report: Optional[StatusReport]) -> None:
        """End polling from inside a poll task."""
        self._running = False
        self._terminal_report = report
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._done.set()
