"""
Delayed reversal of temporary bans and jails.

Timers live only in memory: a min-heap of ``(loop_time, job_id, timer)``
processed by one background task. Everything needed to rebuild them is in
the moderation ledger, so :meth:`ReversalScheduler.restore_all` recreates
the timer set after a restart.

At most one timer exists per (kind, guild, user). Replacing a timer
requires an explicit :meth:`cancel` first.
"""

from __future__ import annotations

import asyncio
import heapq
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Tuple

from warden.datatypes.discord_datatypes import GuildID, UserID
from warden.datatypes.moderation_datatypes import ModerationKind
from warden.moderation.moderation_ledger import ModerationLedger
from warden.util.logger import get_logger

logger = get_logger("reversal_scheduler")


class ReversalKind(Enum):
    TEMPBAN = "tempban"
    JAIL = "jail"


@dataclass(frozen=True, slots=True)
class ReversalTimer:
    """
    A pending reversal.

    Attributes:
        user_id: Account the reversal applies to.
        guild_id: Guild the punishment was applied in.
        fire_at: Unix seconds at which the reversal is due.
        kind: Which punishment to reverse.
        reason: Reason of the original action, for the audit log.
    """

    user_id: UserID
    guild_id: GuildID
    fire_at: float
    kind: ReversalKind = ReversalKind.TEMPBAN
    reason: str = ""

    @property
    def key(self) -> Tuple[ReversalKind, GuildID, UserID]:
        return (self.kind, self.guild_id, self.user_id)


ReversalHandler = Callable[[ReversalTimer], Awaitable[None]]

_LEDGER_KINDS = {
    ModerationKind.TEMPBAN: ReversalKind.TEMPBAN,
    ModerationKind.JAIL: ReversalKind.JAIL,
}


class TimerAlreadyScheduledError(RuntimeError):
    """Raised when scheduling a timer for a key that already has one."""

    def __init__(self, timer: ReversalTimer):
        super().__init__(
            f"A {timer.kind.value} timer is already scheduled for user {timer.user_id} in guild {timer.guild_id}"
        )
        self.timer = timer


class ReversalScheduler:
    """
    Owns the in-memory reversal timers of one bot instance.

    Attributes:
        heap: Min-heap of (run_at, job_id, timer) tuples in loop time.
        pending_keys: Maps each timer key to its live job ID.
        cancelled_ids: Job IDs still in the heap but no longer wanted.
    """

    def __init__(self, ledger: ModerationLedger, clock: Callable[[], float] = time.time) -> None:
        self.ledger = ledger
        self._clock = clock
        self._handlers: Dict[ReversalKind, ReversalHandler] = {}
        self.heap: list[tuple[float, int, ReversalTimer]] = []
        self.pending_keys: Dict[Tuple[ReversalKind, GuildID, UserID], int] = {}
        self.cancelled_ids: set[int] = set()
        self._counter: int = 0
        self.runner_task: asyncio.Task[None] | None = None
        self.condition: asyncio.Condition = asyncio.Condition()

    def register_handler(self, kind: ReversalKind, handler: ReversalHandler) -> None:
        self._handlers[kind] = handler

    def ensure_runner(self) -> None:
        loop = asyncio.get_running_loop()
        if self.runner_task is None or self.runner_task.done():
            self.runner_task = loop.create_task(self.run(), name="warden-reversal-scheduler")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def schedule(
        self,
        user_id: UserID,
        guild_id: GuildID,
        fire_at: float,
        kind: ReversalKind = ReversalKind.TEMPBAN,
        *,
        reason: str = "",
    ) -> bool:
        """
        Register a reversal at ``fire_at`` (unix seconds).

        A timer that is already due runs inline before this returns.

        Returns:
            bool: True if the timer was queued, False if it fired immediately.

        Raises:
            TimerAlreadyScheduledError: A timer with the same key exists.
        """
        timer = ReversalTimer(UserID(user_id), GuildID(guild_id), float(fire_at), kind, reason)

        async with self.condition:
            if timer.key in self.pending_keys:
                raise TimerAlreadyScheduledError(timer)

            remaining = timer.fire_at - self._clock()
            if remaining > 0:
                self.ensure_runner()
                loop = asyncio.get_running_loop()
                self._counter += 1
                job_id = self._counter
                heapq.heappush(self.heap, (loop.time() + remaining, job_id, timer))
                self.pending_keys[timer.key] = job_id
                self.condition.notify_all()
                logger.info(
                    "[SCHEDULER] Scheduled %s reversal for user %s in guild %s in %.0fs",
                    kind.value, timer.user_id, timer.guild_id, remaining,
                )
                return True

        await self.execute(timer)
        return False

    async def cancel(
        self,
        user_id: UserID,
        guild_id: GuildID,
        kind: ReversalKind = ReversalKind.TEMPBAN,
    ) -> bool:
        """Cancel the in-memory timer. The ledger is left untouched."""
        async with self.condition:
            job_id = self.pending_keys.pop((kind, GuildID(guild_id), UserID(user_id)), None)
            if job_id is None:
                return False
            self.cancelled_ids.add(job_id)
            self.condition.notify_all()
        logger.info("[SCHEDULER] Cancelled %s reversal for user %s in guild %s", kind.value, user_id, guild_id)
        return True

    def is_scheduled(
        self,
        user_id: UserID,
        guild_id: GuildID,
        kind: ReversalKind = ReversalKind.TEMPBAN,
    ) -> bool:
        return (kind, GuildID(guild_id), UserID(user_id)) in self.pending_keys

    def pending_timers(self) -> List[ReversalTimer]:
        live = set(self.pending_keys.values())
        return [timer for _, job_id, timer in sorted(self.heap) if job_id in live]

    async def restore_all(self, guild_id: GuildID) -> int:
        """
        Rebuild timers for one guild from the ledger.

        Reversals already due fire immediately; timers already held are
        left alone.

        Returns:
            int: Number of reversals scheduled or fired.
        """
        guild_id = GuildID(guild_id)
        restored = 0
        for pending in await self.ledger.pending_reversals(guild_id, self._clock()):
            kind = _LEDGER_KINDS[pending.kind]
            if self.is_scheduled(pending.user_id, guild_id, kind):
                continue
            try:
                await self.schedule(pending.user_id, guild_id, pending.expires_at, kind, reason=pending.reason)
            except TimerAlreadyScheduledError:
                continue
            restored += 1

        if restored:
            logger.info("[SCHEDULER] Restored %d reversals for guild %s", restored, guild_id)
        return restored

    async def shutdown(self) -> None:
        """Stop the runner and drop every pending timer. Safe to call twice."""
        async with self.condition:
            if self.runner_task:
                self.runner_task.cancel()
            self.heap.clear()
            self.pending_keys.clear()
            self.cancelled_ids.clear()
            self.condition.notify_all()

        if self.runner_task:
            try:
                await self.runner_task
            except asyncio.CancelledError:
                pass
            finally:
                self.runner_task = None

    # ------------------------------------------------------------------
    # Runner
    # ------------------------------------------------------------------

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            async with self.condition:
                while self.heap and self.heap[0][1] in self.cancelled_ids:
                    _, job_id, _ = heapq.heappop(self.heap)
                    self.cancelled_ids.discard(job_id)

                if not self.heap:
                    await self.condition.wait()
                    continue

                run_at = self.heap[0][0]
                delay = run_at - loop.time()
                if delay > 0:
                    try:
                        await asyncio.wait_for(self.condition.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                _, job_id, timer = heapq.heappop(self.heap)
                if self.pending_keys.get(timer.key) == job_id:
                    del self.pending_keys[timer.key]

            await self.execute(timer)

    async def execute(self, timer: ReversalTimer) -> None:
        """Run the handler for ``timer``. Handler errors are logged, never raised."""
        handler = self._handlers.get(timer.kind)
        if handler is None:
            logger.error("[SCHEDULER] No handler registered for %s reversals, dropping timer", timer.kind.value)
            return
        try:
            await handler(timer)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "[SCHEDULER] %s reversal failed for user %s in guild %s",
                timer.kind.value, timer.user_id, timer.guild_id,
            )
