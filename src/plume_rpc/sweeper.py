"""
Background expiry of session tokens.

The ExpirySweeper runs an asyncio task that periodically removes every token
whose age has reached the configured timeout. It never blocks request
handling: each run is a single synchronous pass over the token table, and
between runs the task only waits on a stop event.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from plume_rpc.logging import get_logger
from plume_rpc.tokens import TokenTable

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 30.0
STOP_TIMEOUT_SECONDS = 5.0


class ExpirySweeper:
    """
    Periodically revokes expired tokens from a TokenTable.

    Example:
        >>> sweeper = ExpirySweeper(tokens, ttl=timedelta(minutes=15))
        >>> await sweeper.start()
        >>> await sweeper.stop()
    """

    def __init__(
        self,
        tokens: TokenTable,
        ttl: timedelta,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """
        Initialize the sweeper.

        Args:
            tokens: Table to sweep.
            ttl: Token lifetime.
            interval_seconds: Delay between runs.
        """
        self._tokens = tokens
        self._ttl = ttl
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self.removed_total = 0

    @property
    def is_running(self) -> bool:
        """Check if the background task is alive."""
        return self._task is not None and not self._task.done()

    def run_once(self, now: datetime | None = None) -> int:
        """
        Remove expired tokens once.

        Args:
            now: Reference instant (defaults to the token table's clock).

        Returns:
            Number of tokens removed.
        """
        now = now if now is not None else self._tokens.clock()
        removed = self._tokens.revoke_expired(now, self._ttl)
        if removed > 0:
            self.removed_total += removed
            logger.info(
                "removed %d expired tokens",
                removed,
                extra={"removed": removed, "remaining": len(self._tokens)},
            )
        return removed

    async def start(self) -> None:
        """
        Start the background task.

        Raises:
            RuntimeError: If the sweeper is already running.
        """
        if self.is_running:
            raise RuntimeError("sweeper is already running")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._sweep_loop(), name="plume-rpc-sweeper")
        logger.debug(
            "Token sweeper started",
            extra={"interval_seconds": self._interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the background task, cancelling it if it does not exit promptly."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Token sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

        logger.debug("Token sweeper stopped", extra={"removed_total": self.removed_total})

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._interval_seconds,
                )
                break
            except TimeoutError:
                pass

            try:
                self.run_once()
            except Exception as e:
                logger.error("Error sweeping expired tokens", extra={"error": str(e)})
