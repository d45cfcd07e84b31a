"""Near-real-time status watching for customer and provider sessions.

A ``StatusWatcher`` turns successive job snapshots into one-shot notices. It
owns an explicit ``SessionTracker`` so "already shown" state lives and dies
with the actor's session instead of the process. Snapshots carry a sequence
number taken before the read started; a response that finishes after a newer
one has been applied is dropped.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import get_settings
from app.schemas.service import ServiceStatus

logger = logging.getLogger(__name__)

NOTICE_SELECT_PRO = "select_pro"
NOTICE_SERVICE_COMPLETED = "service_completed"

SELECT_PRO_TITLE = "Select a Pro"
SELECT_PRO_MESSAGE = "Workers are available to fill your request! Select a pro when you're ready."
SERVICE_COMPLETED_TITLE = "Service Completed"
SERVICE_COMPLETED_MESSAGE = "Your service has been completed. Let us know how it went."


@dataclass(frozen=True)
class StatusSnapshot:
    service_id: str
    status: str
    fill_request_count: int = 0


@dataclass(frozen=True)
class StatusNotice:
    kind: str
    service_id: str
    title: str
    message: str


@dataclass
class SessionTracker:
    """What this session has already seen. Cleared on sign-out."""

    shown_select_pro: set[str] = field(default_factory=set)
    viewed_completed: set[str] = field(default_factory=set)
    previous_statuses: dict[str, ServiceStatus] = field(default_factory=dict)

    def reset(self) -> None:
        self.shown_select_pro.clear()
        self.viewed_completed.clear()
        self.previous_statuses.clear()


class StatusWatcher:
    """Turns snapshot sets into notices for one session.

    ``notify_select_pro`` is off for provider sessions: the "select a pro"
    prompt belongs to the customer who owns the job.
    """

    def __init__(self, tracker: Optional[SessionTracker] = None, *, notify_select_pro: bool = True) -> None:
        self.tracker = tracker or SessionTracker()
        self.notify_select_pro = notify_select_pro
        self._lock = threading.Lock()
        self._issued = 0
        self._applied = 0

    @property
    def last_applied_sequence(self) -> int:
        return self._applied

    def next_sequence(self) -> int:
        """Reserve a sequence number; call before the read that produces the snapshot."""
        with self._lock:
            self._issued += 1
            return self._issued

    def observe(self, snapshots: Iterable[StatusSnapshot], sequence: int) -> Optional[list[StatusNotice]]:
        """Apply a snapshot set and return the notices it triggers.

        Returns None when *sequence* is older than the last applied snapshot.
        """
        with self._lock:
            if sequence <= self._applied:
                logger.debug("Dropping stale status snapshot seq=%s applied=%s", sequence, self._applied)
                return None
            self._applied = sequence

            tracker = self.tracker
            notices: list[StatusNotice] = []
            seen: dict[str, ServiceStatus] = {}
            for snapshot in snapshots:
                current = ServiceStatus.coerce(snapshot.status)
                if current is None:
                    logger.warning("Ignoring unknown status %r for service %s", snapshot.status, snapshot.service_id)
                    continue
                previous = tracker.previous_statuses.get(snapshot.service_id)
                seen[snapshot.service_id] = current

                if (
                    self.notify_select_pro
                    and previous == ServiceStatus.FINDING_PROS
                    and current == ServiceStatus.SELECT_SERVICE_PROVIDER
                    and snapshot.service_id not in tracker.shown_select_pro
                ):
                    tracker.shown_select_pro.add(snapshot.service_id)
                    notices.append(
                        StatusNotice(NOTICE_SELECT_PRO, snapshot.service_id, SELECT_PRO_TITLE, SELECT_PRO_MESSAGE)
                    )
                elif current == ServiceStatus.COMPLETED and snapshot.service_id not in tracker.viewed_completed:
                    tracker.viewed_completed.add(snapshot.service_id)
                    notices.append(
                        StatusNotice(
                            NOTICE_SERVICE_COMPLETED,
                            snapshot.service_id,
                            SERVICE_COMPLETED_TITLE,
                            SERVICE_COMPLETED_MESSAGE,
                        )
                    )
            # Jobs that left the feed are forgotten.
            tracker.previous_statuses = seen
            return notices

    def reset(self) -> None:
        with self._lock:
            self.tracker.reset()


FetchSnapshots = Callable[[], Awaitable[list[StatusSnapshot]]]
NoticeHandler = Callable[[list[StatusNotice]], None]


class StatusPoller:
    """Fixed-interval refresh loop.

    Each tick starts a fresh poll whether or not the previous one has
    finished; ordering is restored by the watcher's sequence numbers.
    """

    def __init__(
        self,
        fetch: FetchSnapshots,
        watcher: StatusWatcher,
        *,
        interval_seconds: Optional[float] = None,
        on_notices: Optional[NoticeHandler] = None,
    ) -> None:
        self._fetch = fetch
        self.watcher = watcher
        if interval_seconds is None:
            interval_seconds = get_settings().status_poll_interval_seconds
        self.interval_seconds = interval_seconds
        self._on_notices = on_notices
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def poll_once(self) -> Optional[list[StatusNotice]]:
        sequence = self.watcher.next_sequence()
        snapshots = await self._fetch()
        notices = self.watcher.observe(snapshots, sequence)
        if notices and self._on_notices is not None:
            self._on_notices(notices)
        return notices

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run())

    def refresh(self) -> asyncio.Task:
        """Poll now, e.g. when the screen regains focus."""
        return self._spawn()

    async def stop(self) -> None:
        tasks = list(self._in_flight)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    async def _run(self) -> None:
        while True:
            self._spawn()
            await asyncio.sleep(self.interval_seconds)

    def _spawn(self) -> asyncio.Task:
        task = asyncio.create_task(self.poll_once())
        self._in_flight.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # A failed cycle is skipped; the next tick tries again.
            logger.warning("Status poll failed: %s", exc)


class StatusSessionRegistry:
    """One watcher per signed-in actor, kept on ``app.state``.

    Watchers not polled for ``idle_timeout_seconds`` are dropped; the actor
    starts a fresh session on the next poll.
    """

    def __init__(
        self,
        idle_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._watchers: dict[str, StatusWatcher] = {}
        self._last_used: dict[str, float] = {}
        self._idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock

    @property
    def idle_timeout_seconds(self) -> float:
        if self._idle_timeout_seconds is not None:
            return self._idle_timeout_seconds
        return get_settings().status_session_idle_seconds

    def watcher_for(self, actor_id: str, *, notify_select_pro: bool = True) -> StatusWatcher:
        now = self._clock()
        with self._lock:
            self._prune_idle(now)
            watcher = self._watchers.get(actor_id)
            if watcher is None:
                watcher = StatusWatcher(notify_select_pro=notify_select_pro)
                self._watchers[actor_id] = watcher
            self._last_used[actor_id] = now
            return watcher

    def sign_out(self, actor_id: str) -> bool:
        with self._lock:
            watcher = self._watchers.pop(actor_id, None)
            self._last_used.pop(actor_id, None)
        if watcher is None:
            return False
        watcher.reset()
        return True

    def _prune_idle(self, now: float) -> None:
        cutoff = now - self.idle_timeout_seconds
        for actor_id in [a for a, used in self._last_used.items() if used < cutoff]:
            self._watchers.pop(actor_id, None)
            del self._last_used[actor_id]
            logger.debug("Dropped idle status session for %s", actor_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._watchers)
