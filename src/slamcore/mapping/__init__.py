"""Serialised application of map updates."""

from .map_updater import MapUpdater
from .messages import (
    KeyframeEraseMessage,
    KeyframeInsertMessage,
    LoopEdgeMessage,
    MapUpdateMessage,
    ShutdownMessage,
)

__all__ = [
    "MapUpdater",
    "KeyframeInsertMessage",
    "KeyframeEraseMessage",
    "LoopEdgeMessage",
    "ShutdownMessage",
    "MapUpdateMessage",
]
