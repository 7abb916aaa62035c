"""Unit tests for kubepulse.collector.pod_stream.PodWatchStream.

Covers:
- list -> INIT / INIT_APPLY / INIT_DONE framing
- watch event mapping (ADDED/MODIFIED -> APPLY, DELETED -> DELETE, BOOKMARK skipped)
- resume from the list's resourceVersion and from bookmarks
- 410 Gone and repeated stream ends trigger a relist
- relist failures back off and retry
- exponential back-off capped at 60s
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from kubernetes_asyncio.client.exceptions import ApiException

from kubepulse.collector.pod_stream import PodWatchStream, _extract_rv
from kubepulse.models.watch import PodWatchEvent, WatchEventType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw(name: str, rv: str = "") -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name}
    if rv:
        metadata["resourceVersion"] = rv
    return {"metadata": metadata}


def _make_api(*item_batches: list[dict[str, Any]], rv: str = "100") -> MagicMock:
    """CoreV1Api stand-in whose successive list calls return *item_batches*."""
    api = MagicMock()
    result = MagicMock()
    result.metadata.resource_version = rv
    api.list_namespaced_pod = AsyncMock(return_value=result)
    batches = list(item_batches) or [[]]
    api.api_client.sanitize_for_serialization = MagicMock(
        side_effect=[{"items": b} for b in batches] + [{"items": batches[-1]}] * 10
    )
    return api


def _make_watch(*streams: Any) -> MagicMock:
    """Watch stand-in; each stream() call uses the next scripted async generator function."""
    mock_watch = MagicMock()
    calls = iter(streams)
    mock_watch.stream = MagicMock(side_effect=lambda *args, **kwargs: next(calls)(*args, **kwargs))
    mock_watch.close = AsyncMock()
    return mock_watch


async def _ended(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
    return
    yield  # make it an async generator


async def _take(stream: PodWatchStream, count: int) -> list[PodWatchEvent]:
    events: list[PodWatchEvent] = []
    gen = stream.events()
    try:
        while len(events) < count:
            events.append(await gen.__anext__())
    finally:
        await gen.aclose()
    return events


# ---------------------------------------------------------------------------
# Listing and watching
# ---------------------------------------------------------------------------


class TestListAndWatch:
    async def test_list_then_watch_event_mapping(self) -> None:
        api = _make_api([_raw("a"), _raw("b")])

        async def _events(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            yield {"type": "BOOKMARK", "raw_object": _raw("", rv="150")}
            yield {"type": "ADDED", "raw_object": _raw("c", rv="151")}
            yield {"type": "MODIFIED", "raw_object": _raw("a", rv="152")}
            yield {"type": "DELETED", "raw_object": _raw("b", rv="153")}

        mock_watch = _make_watch(_events)
        stream = PodWatchStream(api, "default")
        with patch("kubepulse.collector.pod_stream.watch.Watch", return_value=mock_watch):
            events = await _take(stream, 7)

        assert [e.type for e in events] == [
            WatchEventType.INIT,
            WatchEventType.INIT_APPLY,
            WatchEventType.INIT_APPLY,
            WatchEventType.INIT_DONE,
            WatchEventType.APPLY,
            WatchEventType.APPLY,
            WatchEventType.DELETE,
        ]
        assert events[4].pod["metadata"]["name"] == "c"
        assert events[6].pod["metadata"]["name"] == "b"

        _, kwargs = mock_watch.stream.call_args
        assert kwargs["resource_version"] == "100"
        assert kwargs["allow_watch_bookmarks"] is True
        assert stream._resource_version == "153"

    async def test_iterating_the_stream_object(self) -> None:
        api = _make_api([_raw("a")])
        stream = PodWatchStream(api, "default")
        first: list[PodWatchEvent] = []
        async for event in stream:
            first.append(event)
            if len(first) == 2:
                break
        assert [e.type for e in first] == [WatchEventType.INIT, WatchEventType.INIT_APPLY]

    async def test_watch_is_closed_after_error(self) -> None:
        api = _make_api([])

        async def _boom(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            raise ApiException(status=500, reason="Internal")
            yield

        mock_watch = _make_watch(_boom, _ended, _ended)
        stream = PodWatchStream(api, "default")
        with (
            patch("kubepulse.collector.pod_stream.watch.Watch", return_value=mock_watch),
            patch.object(stream, "_backoff", new_callable=AsyncMock) as mock_backoff,
        ):
            gen = stream.events()
            await gen.__anext__()  # INIT
            await gen.__anext__()  # INIT_DONE
            # A failing watch and two clean stream ends add up to a relist.
            event = await gen.__anext__()
            await gen.aclose()

        assert mock_watch.close.await_count == 3
        assert mock_backoff.await_count == 2
        assert event.type == WatchEventType.INIT


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


class TestRecovery:
    async def test_gone_410_forces_relist_without_backoff(self) -> None:
        api = _make_api([], [])

        async def _gone(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            raise ApiException(status=410, reason="Gone")
            yield

        mock_watch = _make_watch(_gone)
        stream = PodWatchStream(api, "default")
        with (
            patch("kubepulse.collector.pod_stream.watch.Watch", return_value=mock_watch),
            patch.object(stream, "_backoff", new_callable=AsyncMock) as mock_backoff,
        ):
            events = await _take(stream, 4)

        assert [e.type for e in events] == [
            WatchEventType.INIT,
            WatchEventType.INIT_DONE,
            WatchEventType.INIT,
            WatchEventType.INIT_DONE,
        ]
        assert api.list_namespaced_pod.await_count == 2
        mock_backoff.assert_not_awaited()

    async def test_three_stream_ends_force_relist(self) -> None:
        api = _make_api([], [])
        mock_watch = _make_watch(_ended, _ended, _ended)
        stream = PodWatchStream(api, "default")
        with (
            patch("kubepulse.collector.pod_stream.watch.Watch", return_value=mock_watch),
            patch.object(stream, "_backoff", new_callable=AsyncMock) as mock_backoff,
        ):
            events = await _take(stream, 3)

        assert events[-1].type == WatchEventType.INIT
        assert api.list_namespaced_pod.await_count == 2
        assert mock_backoff.await_count == 2

    async def test_transport_error_reconnects_with_backoff(self) -> None:
        api = _make_api([])

        async def _reset(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            raise ConnectionResetError("peer reset")
            yield

        async def _one(*args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            yield {"type": "ADDED", "raw_object": _raw("x", rv="200")}

        mock_watch = _make_watch(_reset, _one)
        stream = PodWatchStream(api, "default")
        with (
            patch("kubepulse.collector.pod_stream.watch.Watch", return_value=mock_watch),
            patch.object(stream, "_backoff", new_callable=AsyncMock) as mock_backoff,
        ):
            events = await _take(stream, 3)

        assert events[-1].type == WatchEventType.APPLY
        mock_backoff.assert_awaited_once_with("reconnect")
        assert stream._consecutive_failures == 0

    async def test_relist_failure_backs_off_and_retries(self) -> None:
        api = _make_api([])
        result = api.list_namespaced_pod.return_value
        api.list_namespaced_pod = AsyncMock(side_effect=[ApiException(status=503, reason="Unavailable"), result])
        stream = PodWatchStream(api, "default")
        with patch.object(stream, "_backoff", new_callable=AsyncMock) as mock_backoff:
            events = await _take(stream, 1)

        assert events[0].type == WatchEventType.INIT
        mock_backoff.assert_awaited_once_with("relist_failed")


# ---------------------------------------------------------------------------
# Back-off and helpers
# ---------------------------------------------------------------------------


class TestBackoff:
    async def test_doubles_up_to_cap(self) -> None:
        stream = PodWatchStream(MagicMock(), "default")
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            for _ in range(8):
                await stream._backoff("test")
        delays = [call.args[0] for call in mock_sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]

    async def test_reset(self) -> None:
        stream = PodWatchStream(MagicMock(), "default")
        with patch("asyncio.sleep", new_callable=AsyncMock):
            await stream._backoff("test")
        stream._consecutive_failures = 2
        stream._reset_backoff()
        assert stream._backoff_s == 1.0
        assert stream._consecutive_failures == 0


class TestExtractRv:
    def test_reads_metadata(self) -> None:
        assert _extract_rv({"metadata": {"resourceVersion": "9"}}) == "9"

    def test_missing_or_malformed(self) -> None:
        assert _extract_rv({}) == ""
        assert _extract_rv({"metadata": "nope"}) == ""
