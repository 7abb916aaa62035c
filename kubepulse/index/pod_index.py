"""Live, debounced pod index for one namespace.

Consumes a pod change stream, keeps the current pods keyed by name and
pushes the rendered pod list to subscribers.  Emissions are debounced: the
first change after a quiet period is pushed immediately, later changes
within the window are coalesced into one push when the window elapses.  An
independent ticker re-pushes a non-empty list periodically so that pod ages
stay current.

Lifecycle::

    index = LivePodIndex("payments", stream, load_index)
    index.subscribe(on_pods_changed)
    task = asyncio.create_task(index.run())
    ...
    task.cancel()
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Coroutine
from enum import StrEnum
from typing import Any

from kubepulse.cluster.parsers import parse_pod, pod_name
from kubepulse.cluster.reader import ClusterAPIError
from kubepulse.formatting import format_age
from kubepulse.models.incident import PodInfo
from kubepulse.models.resources import Pod
from kubepulse.models.watch import PodWatchEvent, WatchEventType
from kubepulse.observability.logging import get_logger
from kubepulse.observability.metrics import (
    pod_index_emissions_total,
    pod_index_pods,
    pod_index_resyncs_total,
)
from kubepulse.ownership.resolver import GenerationIndex, resolve_owner

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

PodsChangedHandler = Callable[[list[PodInfo]], Coroutine[Any, Any, None]]
GenerationIndexLoader = Callable[[], Awaitable[GenerationIndex]]
StreamFactory = Callable[[str], AsyncIterable[PodWatchEvent]]
NamespaceIndexLoader = Callable[[str], Awaitable[GenerationIndex]]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_DEBOUNCE_S: float = 0.3
DEFAULT_AGE_REFRESH_S: float = 30.0


class PodIndexState(StrEnum):
    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    READY = "ready"
    PENDING_EMIT = "pending_emit"


def render_pod(pod: Pod, index: GenerationIndex) -> PodInfo:
    """Render one pod row, attributing it to its workload."""
    if pod.deleting:
        status = "Terminating"
    else:
        status = pod.phase or "Unknown"
    owner = resolve_owner(pod, index)
    return PodInfo(
        name=pod.name,
        namespace=pod.namespace,
        status=status,
        ready=f"{pod.ready_containers}/{len(pod.container_statuses)}",
        restarts=pod.restart_count,
        age=format_age(pod.created_at),
        node=pod.node_name,
        ip=pod.pod_ip,
        workload_kind=owner.kind if owner else None,
        workload_name=owner.name if owner else None,
    )


async def _next_event(iterator: AsyncIterator[PodWatchEvent]) -> PodWatchEvent | None:
    """Next stream event, or None once the stream is exhausted."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class LivePodIndex:
    """Debounced pod cache for a single namespace.

    The cache, the pending-emission deadline and the generation index are
    only touched while holding ``_lock``.
    """

    def __init__(
        self,
        namespace: str,
        stream: AsyncIterable[PodWatchEvent],
        load_generation_index: GenerationIndexLoader,
        debounce: float = DEFAULT_DEBOUNCE_S,
        age_refresh: float = DEFAULT_AGE_REFRESH_S,
    ) -> None:
        self.namespace = namespace
        self._stream = stream
        self._load_generation_index = load_generation_index
        self._debounce = debounce
        self._age_refresh = age_refresh
        self._log = get_logger("index.pods")

        self._lock = asyncio.Lock()
        self._pods: dict[str, Pod] = {}
        self._generation_index: GenerationIndex = {}
        self._handlers: list[PodsChangedHandler] = []

        self._state = PodIndexState.UNINITIALIZED
        self._synced = False
        self._last_emit_at: float = -math.inf
        self._pending_deadline: float | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def state(self) -> PodIndexState:
        return self._state

    def __len__(self) -> int:
        return len(self._pods)

    def subscribe(self, handler: PodsChangedHandler) -> None:
        """Register an async callback receiving every emitted pod list.

        Args:
            handler: ``async def handler(pods: list[PodInfo]) -> None``
        """
        self._handlers.append(handler)

    def snapshot(self) -> list[PodInfo]:
        """Render the cached pods, sorted by name."""
        return [render_pod(self._pods[name], self._generation_index) for name in sorted(self._pods)]

    async def run(self) -> None:
        """Consume the change stream until it ends or the task is cancelled.

        A change still waiting out its debounce window when the stream ends
        is flushed before returning.
        """
        loop = asyncio.get_running_loop()
        iterator = aiter(self._stream)
        pending_next: asyncio.Task[PodWatchEvent | None] | None = None
        next_tick = loop.time() + self._age_refresh
        self._log.info("pod_index_started", namespace=self.namespace)

        try:
            while True:
                if pending_next is None:
                    pending_next = asyncio.create_task(_next_event(iterator))

                deadline = next_tick
                if self._pending_deadline is not None:
                    deadline = min(deadline, self._pending_deadline)
                done, _ = await asyncio.wait({pending_next}, timeout=max(0.0, deadline - loop.time()))

                if pending_next in done:
                    event = pending_next.result()
                    pending_next = None
                    if event is None:
                        break
                    await self._apply(event)
                    await self._after_change(loop.time())

                now = loop.time()
                if self._pending_deadline is not None and now >= self._pending_deadline:
                    await self._emit("debounce")
                if now >= next_tick:
                    next_tick = now + self._age_refresh
                    if self._pods:
                        await self._emit("age_refresh")

            if self._pending_deadline is not None:
                await self._emit("flush")
        finally:
            if pending_next is not None and not pending_next.done():
                pending_next.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending_next
            self._log.info("pod_index_stopped", namespace=self.namespace)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _apply(self, event: PodWatchEvent) -> None:
        if event.type == WatchEventType.INIT:
            # Load outside the lock; the listing may take a while.
            try:
                generation_index = await self._load_generation_index()
            except ClusterAPIError as exc:
                # Pods still render; ReplicaSet owners fall back to the ReplicaSet itself.
                self._log.warning("pod_index_generation_load_failed", namespace=self.namespace, error=str(exc))
                generation_index = {}
            async with self._lock:
                self._pods.clear()
                self._generation_index = generation_index
                self._synced = False
                self._state = PodIndexState.SYNCING
            pod_index_resyncs_total.inc()
            self._log.debug("pod_index_resync", namespace=self.namespace)
        elif event.type in (WatchEventType.INIT_APPLY, WatchEventType.APPLY):
            pod = parse_pod(event.pod)
            if pod.name:
                async with self._lock:
                    self._pods[pod.name] = pod
        elif event.type == WatchEventType.DELETE:
            name = pod_name(event.pod)
            async with self._lock:
                self._pods.pop(name, None)
        elif event.type == WatchEventType.INIT_DONE:
            async with self._lock:
                self._synced = True
                self._state = PodIndexState.READY
        pod_index_pods.set(len(self._pods))

    async def _after_change(self, now: float) -> None:
        """Emit now if the debounce window has passed, otherwise schedule it."""
        async with self._lock:
            if self._pending_deadline is not None:
                return
            if now - self._last_emit_at < self._debounce:
                self._pending_deadline = self._last_emit_at + self._debounce
                self._state = PodIndexState.PENDING_EMIT
                return
        await self._emit("event")

    async def _emit(self, trigger: str) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            self._pending_deadline = None
            self._last_emit_at = loop.time()
            if self._state == PodIndexState.PENDING_EMIT:
                self._state = PodIndexState.READY if self._synced else PodIndexState.SYNCING
            pods = self.snapshot()

        pod_index_emissions_total.labels(trigger=trigger).inc()
        self._log.debug("pod_index_emit", namespace=self.namespace, trigger=trigger, pods=len(pods))
        if not self._handlers:
            return
        results = await asyncio.gather(*(h(list(pods)) for h in self._handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._log.warning("pod_index_handler_failed", namespace=self.namespace, error=str(result))


class PodIndexSupervisor:
    """Owns the single active :class:`LivePodIndex` of the process.

    Starting a watch on a namespace stops any previous one first.  The
    latest emitted pod list is kept for polling consumers.
    """

    def __init__(
        self,
        stream_factory: StreamFactory,
        load_generation_index: NamespaceIndexLoader,
        debounce: float = DEFAULT_DEBOUNCE_S,
        age_refresh: float = DEFAULT_AGE_REFRESH_S,
    ) -> None:
        self._stream_factory = stream_factory
        self._load_generation_index = load_generation_index
        self._debounce = debounce
        self._age_refresh = age_refresh
        self._log = get_logger("index.supervisor")

        self._index: LivePodIndex | None = None
        self._task: asyncio.Task[None] | None = None
        self._latest: list[PodInfo] = []
        self._handlers: list[PodsChangedHandler] = []

    @property
    def namespace(self) -> str | None:
        return self._index.namespace if self._index is not None else None

    @property
    def state(self) -> PodIndexState | None:
        """State of the running index; ``None`` when idle or after the index task has exited."""
        if self._index is None or self._task is None or self._task.done():
            return None
        return self._index.state

    def subscribe(self, handler: PodsChangedHandler) -> None:
        """Register a handler attached to every index this supervisor starts."""
        self._handlers.append(handler)
        if self._index is not None:
            self._index.subscribe(handler)

    def latest(self) -> list[PodInfo]:
        return list(self._latest)

    async def start(self, namespace: str) -> None:
        """Watch *namespace*, replacing any index that is already running."""
        await self.stop()

        async def _load() -> GenerationIndex:
            return await self._load_generation_index(namespace)

        index = LivePodIndex(
            namespace,
            self._stream_factory(namespace),
            _load,
            debounce=self._debounce,
            age_refresh=self._age_refresh,
        )
        index.subscribe(self._record)
        for handler in self._handlers:
            index.subscribe(handler)

        self._index = index
        self._latest = []
        self._task = asyncio.create_task(index.run(), name=f"pod-index-{namespace}")
        self._task.add_done_callback(self._on_index_exit)
        self._log.info("pod_watch_started", namespace=namespace)

    async def stop(self) -> None:
        """Cancel the active index, if any, and wait for it to exit."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self._index is not None:
            self._log.info("pod_watch_stopped", namespace=self._index.namespace)
        self._task = None
        self._index = None

    async def _record(self, pods: list[PodInfo]) -> None:
        self._latest = pods

    def _on_index_exit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("pod_index_task_failed", task=task.get_name(), error=str(exc))
