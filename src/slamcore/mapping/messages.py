"""Message types for the map update worker.

Mapping and loop-closing code running on other threads describe graph
mutations with these messages instead of touching several graph nodes
themselves; the worker applies them one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..data import Keyframe


@dataclass
class KeyframeInsertMessage:
    """Register a keyframe whose landmark observations are known.

    The worker adds it to the map database and updates its covisibility
    connections (which also attaches it to the spanning tree).
    """

    keyframe: Keyframe


@dataclass
class KeyframeEraseMessage:
    """Erase a keyframe, reattaching its spanning children."""

    keyframe_id: int


@dataclass
class LoopEdgeMessage:
    """Register a confirmed loop closure between two keyframes."""

    keyframe_id_1: int
    keyframe_id_2: int


@dataclass
class ShutdownMessage:
    """Signal to stop the worker gracefully."""

    pass


MapUpdateMessage = (
    KeyframeInsertMessage | KeyframeEraseMessage | LoopEdgeMessage | ShutdownMessage
)
