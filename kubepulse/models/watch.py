"""Change-stream events consumed by the live pod index."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class WatchEventType(StrEnum):
    """Pod change-stream event kinds.

    A (re)list produces ``INIT``, one ``INIT_APPLY`` per listed pod, then
    ``INIT_DONE``.  Live changes arrive as ``APPLY`` or ``DELETE``.
    """

    INIT = "Init"
    INIT_APPLY = "InitApply"
    INIT_DONE = "InitDone"
    APPLY = "Apply"
    DELETE = "Delete"


@dataclass(frozen=True)
class PodWatchEvent:
    type: WatchEventType
    pod: dict[str, Any] = field(default_factory=dict)
