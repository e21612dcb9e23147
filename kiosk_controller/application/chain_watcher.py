"""
Chain Watcher - Polls the ledger for the expected payment.

On every tick the watcher scans the window
``[max(start_block, head - lookback), head]`` newest block first, each
block's transactions in native order, and reports the first transaction
matching the rule. After one report it stops.

Only one scan is in flight at a time; a tick that arrives while the
previous scan is still running is skipped. Failed scans back off
exponentially (with jitter) until the next success.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from core.backoff import ExponentialBackoff
from core.exceptions import LedgerError
from core.interfaces import LedgerReader
from core.value_objects import TransferMatch, WatchWindow
from domain.transfer_matcher import MatchRule
from loggers import logger


MatchCallback = Callable[[TransferMatch], Awaitable[None]]
HeightCallback = Callable[[int], Awaitable[None]]
StatusCallback = Callable[[str], Awaitable[None]]


class ChainWatcher:
    """
    Watches the ledger for a single payment per activation.

    Attributes:
        poll_interval: Seconds between ticks while healthy.
        lookback: How many blocks below the head each tick re-scans.
        last_window: Window scanned by the most recent tick.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        rule: MatchRule,
        on_match: MatchCallback,
        on_seeded: Optional[HeightCallback] = None,
        on_status: Optional[StatusCallback] = None,
        poll_interval: float = 3.0,
        lookback: int = 10,
        backoff: Optional[ExponentialBackoff] = None,
    ) -> None:
        """
        Initialize the watcher.

        Args:
            ledger: Ledger reader.
            rule: Payment acceptance rule.
            on_match: Called once with the first matching transfer.
            on_seeded: Called when the start height is first known.
            on_status: Called with a short status text on health changes.
            poll_interval: Seconds between ticks.
            lookback: Blocks below the head to re-scan each tick.
            backoff: Retry policy for failed ticks.
        """
        self._ledger = ledger
        self._rule = rule
        self._on_match = on_match
        self._on_seeded = on_seeded
        self._on_status = on_status
        self.poll_interval = poll_interval
        self.lookback = lookback
        self._backoff = backoff or ExponentialBackoff(base_delay=poll_interval)

        self._start_block: Optional[int] = None
        self._matched = False
        self._next_delay = poll_interval
        self._run_task: Optional[asyncio.Task] = None
        self._scan_task: Optional[asyncio.Task] = None
        self.last_window: Optional[WatchWindow] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def rule(self) -> MatchRule:
        return self._rule

    @property
    def start_block(self) -> Optional[int]:
        return self._start_block

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def matched(self) -> bool:
        return self._matched

    @property
    def consecutive_failures(self) -> int:
        return self._backoff.attempt

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, start_block: Optional[int] = None) -> None:
        """
        Start watching.

        Args:
            start_block: Height to start from; when None the first
                successful head fetch seeds it.
        """
        self.cancel()

        self._start_block = start_block
        self._matched = False
        self._backoff.reset()
        self._next_delay = self.poll_interval
        self.last_window = None

        self._run_task = asyncio.create_task(self._run(), name="chain_watcher")
        logger.info(
            f"Chain watcher started ({self._rule.mode.value} mode, "
            f"merchant {self._rule.merchant_address})"
        )

    def cancel(self) -> None:
        """Tear down the poll loop and any in-flight scan."""
        for task in (self._run_task, self._scan_task):
            if task is not None and not task.done():
                task.cancel()
        if self._run_task is not None:
            logger.info("Chain watcher stopped")
        self._run_task = None
        self._scan_task = None

    async def stop(self) -> None:
        """Cancel and wait for the tasks to finish."""
        tasks = [t for t in (self._run_task, self._scan_task) if t is not None]
        self.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Polling
    # =========================================================================

    async def _run(self) -> None:
        """Fixed-cadence ticker. Skips a tick while the previous scan runs."""
        loop = asyncio.get_running_loop()
        try:
            while not self._matched:
                started = loop.time()

                if self._scan_task is None or self._scan_task.done():
                    self._scan_task = asyncio.create_task(self._tick(), name="chain_scan")
                else:
                    logger.debug("Previous ledger scan still running, skipping tick")

                await asyncio.wait({self._scan_task}, timeout=self.poll_interval)
                if self._matched:
                    break

                remaining = self._next_delay - (loop.time() - started)
                if remaining > 0:
                    await asyncio.sleep(remaining)
        except asyncio.CancelledError:
            pass

    async def _tick(self) -> None:
        """One scan with error handling and backoff bookkeeping."""
        try:
            match = await self.poll_once()
        except LedgerError as e:
            self._record_failure(str(e))
            await self._notify_status("Ledger unavailable, retrying...")
            return
        except Exception as e:
            logger.exception(f"Unexpected error while scanning ledger: {e}")
            self._record_failure(str(e))
            return

        if self._backoff.attempt:
            logger.info("Ledger reachable again")
            await self._notify_status("Monitoring blockchain...")
        self._backoff.reset()
        self._next_delay = self.poll_interval

        if match is not None and not self._matched:
            self._matched = True
            logger.info(
                f"Payment found: {match.tx_hash} from {match.payer_address} "
                f"({match.amount}) in block {match.block_height}"
            )
            await self._on_match(match)

    def _record_failure(self, error: str) -> None:
        self._next_delay = self._backoff.next_delay()
        logger.warning(
            f"Ledger scan failed (attempt {self._backoff.attempt}), "
            f"retrying in {self._next_delay:.1f}s: {error}"
        )

    async def poll_once(self) -> Optional[TransferMatch]:
        """
        Scan the current window once.

        Returns:
            First matching transfer, or None.

        Raises:
            LedgerError: If any ledger fetch fails.
        """
        head = await self._ledger.current_height()

        if self._start_block is None:
            self._start_block = head
            logger.info(f"Watching from block {head}")
            if self._on_seeded is not None:
                await self._on_seeded(head)

        if head < self._start_block:
            return None

        window = WatchWindow.compute(self._start_block, head, self.lookback)
        self.last_window = window

        for height in window.heights_descending():
            block = await self._ledger.block_with_transactions(height)
            for tx in block.transactions:
                match = self._rule.match(tx, height)
                if match is not None:
                    return match

        return None

    async def _notify_status(self, status: str) -> None:
        if self._on_status is None:
            return
        try:
            await self._on_status(status)
        except Exception as e:
            logger.error(f"Status callback error: {e}")
