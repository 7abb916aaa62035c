"""Reconnecting pod change stream for one namespace.

Wraps kubernetes_asyncio's Watch to turn list + watch into the event
sequence the live pod index consumes:

- a list produces ``INIT``, one ``INIT_APPLY`` per pod, then ``INIT_DONE``
- the watch resumes from the list's resourceVersion; ADDED/MODIFIED map to
  ``APPLY``, DELETED to ``DELETE``, BOOKMARK only moves the resume point
- 410 Gone, or 3 consecutive failures, trigger a relist (a new INIT cycle)
- other failures back off exponentially (1 s – 60 s) before reconnecting
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from kubepulse.models.watch import PodWatchEvent, WatchEventType
from kubepulse.observability.logging import get_logger
from kubepulse.observability.metrics import (
    watcher_backoff_seconds,
    watcher_errors_total,
    watcher_events_total,
    watcher_reconnects_total,
    watcher_relistings_total,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BACKOFF_MIN_S: float = 1.0
_BACKOFF_MAX_S: float = 60.0
_BACKOFF_MULTIPLIER: float = 2.0

_MAX_CONSECUTIVE_FAILURES: int = 3
_WATCHER_NAME = "pod_stream"

_EVENT_TYPES: dict[str, WatchEventType] = {
    "ADDED": WatchEventType.APPLY,
    "MODIFIED": WatchEventType.APPLY,
    "DELETED": WatchEventType.DELETE,
}


class PodWatchStream:
    """Async iterable of :class:`PodWatchEvent` for the pods of one namespace.

    Iteration never ends on its own; cancel the consuming task to stop it.

    Usage::

        stream = PodWatchStream(CoreV1Api(api_client), "payments")
        async for event in stream:
            ...
    """

    def __init__(self, api: Any, namespace: str) -> None:
        """Initialise the stream.

        Args:
            api: A kubernetes_asyncio ``CoreV1Api`` instance.
            namespace: Namespace whose pods are watched.
        """
        self._api = api
        self._namespace = namespace
        self._log = get_logger(f"watcher.{_WATCHER_NAME}")

        self._resource_version: str = ""
        self._needs_list: bool = True
        self._consecutive_failures: int = 0
        self._backoff_s: float = _BACKOFF_MIN_S

    def __aiter__(self) -> AsyncIterator[PodWatchEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[PodWatchEvent]:
        while True:
            if self._needs_list:
                try:
                    pods = await self._list()
                except ApiException as exc:
                    watcher_errors_total.labels(watcher=_WATCHER_NAME, status_code=str(exc.status)).inc()
                    self._log.error("relist_failed", namespace=self._namespace, status=exc.status, reason=exc.reason)
                    await self._backoff("relist_failed")
                    continue
                except Exception as exc:
                    self._log.error("relist_failed", namespace=self._namespace, error=str(exc), exc_info=True)
                    await self._backoff("relist_failed")
                    continue

                yield PodWatchEvent(WatchEventType.INIT)
                for pod in pods:
                    yield PodWatchEvent(WatchEventType.INIT_APPLY, pod)
                yield PodWatchEvent(WatchEventType.INIT_DONE)
                self._needs_list = False
                self._reset_backoff()

            try:
                async for event in self._watch():
                    yield event
                self._on_failure("stream_end")
            except ApiException as exc:
                self._handle_api_exception(exc)
            except (OSError, TimeoutError) as exc:
                self._log.warning("watch_transport_error", namespace=self._namespace, error=str(exc))
                self._on_failure("transport")
            except Exception as exc:
                self._log.error(
                    "watch_unexpected_error", namespace=self._namespace, error=str(exc), exc_info=True
                )
                self._on_failure("unexpected")

            if not self._needs_list:
                await self._backoff("reconnect")

    # ------------------------------------------------------------------
    # List / watch
    # ------------------------------------------------------------------

    async def _list(self) -> list[dict[str, Any]]:
        """List pods, record the resume point and return them as raw dicts."""
        watcher_relistings_total.labels(watcher=_WATCHER_NAME).inc()
        result = await self._api.list_namespaced_pod(self._namespace)
        self._resource_version = getattr(result.metadata, "resource_version", "") or ""

        api_client = getattr(self._api, "api_client", None)
        if api_client is not None:
            items = api_client.sanitize_for_serialization(result).get("items", [])
        else:
            items = getattr(result, "items", []) or []
        self._log.info(
            "relist_complete",
            namespace=self._namespace,
            pods=len(items),
            resource_version=self._resource_version,
        )
        return [item for item in items if isinstance(item, dict)]

    async def _watch(self) -> AsyncIterator[PodWatchEvent]:
        kwargs: dict[str, Any] = {"allow_watch_bookmarks": True}
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        w = watch.Watch()
        try:
            async for raw_event in w.stream(self._api.list_namespaced_pod, self._namespace, **kwargs):
                event_type: str = raw_event.get("type", "")
                raw = raw_event.get("raw_object", {})
                if not isinstance(raw, dict):
                    raw = {}

                rv = _extract_rv(raw)
                if rv:
                    self._resource_version = rv
                watcher_events_total.labels(watcher=_WATCHER_NAME, event_type=event_type).inc()

                mapped = _EVENT_TYPES.get(event_type)
                if mapped is None:
                    continue
                self._consecutive_failures = 0
                yield PodWatchEvent(mapped, raw)
        finally:
            await w.close()

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _handle_api_exception(self, exc: ApiException) -> None:
        watcher_errors_total.labels(watcher=_WATCHER_NAME, status_code=str(exc.status)).inc()
        if exc.status == 410:
            self._log.warning("watch_gone_410", namespace=self._namespace)
            watcher_reconnects_total.labels(watcher=_WATCHER_NAME, reason="410").inc()
            self._resource_version = ""
            self._needs_list = True
            return
        self._log.warning("watch_api_error", namespace=self._namespace, status=exc.status, reason=exc.reason)
        self._on_failure(str(exc.status))

    def _on_failure(self, reason: str) -> None:
        self._consecutive_failures += 1
        watcher_reconnects_total.labels(watcher=_WATCHER_NAME, reason=reason).inc()
        self._log.debug(
            "watch_interrupted",
            namespace=self._namespace,
            reason=reason,
            consecutive_failures=self._consecutive_failures,
        )
        if self._consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
            self._needs_list = True

    async def _backoff(self, reason: str) -> None:
        """Sleep for the current back-off duration, then increase it."""
        delay = min(self._backoff_s, _BACKOFF_MAX_S)
        self._log.debug("watcher_backoff", namespace=self._namespace, reason=reason, delay_s=delay)
        watcher_backoff_seconds.labels(watcher=_WATCHER_NAME).observe(delay)
        await asyncio.sleep(delay)
        self._backoff_s = min(self._backoff_s * _BACKOFF_MULTIPLIER, _BACKOFF_MAX_S)

    def _reset_backoff(self) -> None:
        self._backoff_s = _BACKOFF_MIN_S
        self._consecutive_failures = 0


def _extract_rv(raw: dict[str, Any]) -> str:
    """resourceVersion of a watch event's raw object (bookmarks included)."""
    metadata = raw.get("metadata")
    if isinstance(metadata, dict):
        return str(metadata.get("resourceVersion", "") or "")
    return ""
