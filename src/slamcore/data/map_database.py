"""Id-keyed storage of the keyframes and landmarks of a map.

Keyframes and landmarks reference each other directly; the database is
the arena that owns them and hands out ids.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .keyframe import Keyframe
    from .landmark import Landmark

logger = logging.getLogger(__name__)


class MapDatabase:
    """Registry of live keyframes and landmarks.

    The lock only protects the registries themselves; keyframes,
    landmarks and graph nodes guard their own state.
    """

    def __init__(self) -> None:
        """Initialize empty map."""
        self._lock = threading.Lock()
        self._keyframes: dict[int, Keyframe] = {}
        self._landmarks: dict[int, Landmark] = {}
        self._next_keyframe_id = 0
        self._next_landmark_id = 0

    def issue_keyframe_id(self) -> int:
        """Reserve the next keyframe id (the first one roots the tree)."""
        with self._lock:
            kf_id = self._next_keyframe_id
            self._next_keyframe_id += 1
            return kf_id

    def issue_landmark_id(self) -> int:
        with self._lock:
            lm_id = self._next_landmark_id
            self._next_landmark_id += 1
            return lm_id

    def add_keyframe(self, keyfrm: Keyframe) -> None:
        with self._lock:
            self._keyframes[keyfrm.id] = keyfrm
            self._next_keyframe_id = max(self._next_keyframe_id, keyfrm.id + 1)

    def erase_keyframe(self, keyfrm: Keyframe) -> None:
        with self._lock:
            removed = self._keyframes.pop(keyfrm.id, None)
        if removed is None:
            logger.warning("Keyframe %d is not in the map", keyfrm.id)

    def get_keyframe(self, kf_id: int) -> Keyframe | None:
        with self._lock:
            return self._keyframes.get(kf_id)

    def get_all_keyframes(self) -> list[Keyframe]:
        """Return all keyframes, oldest first."""
        with self._lock:
            return [self._keyframes[k] for k in sorted(self._keyframes)]

    def add_landmark(self, lm: Landmark) -> None:
        with self._lock:
            self._landmarks[lm.id] = lm
            self._next_landmark_id = max(self._next_landmark_id, lm.id + 1)

    def erase_landmark(self, lm: Landmark) -> None:
        with self._lock:
            self._landmarks.pop(lm.id, None)

    def get_landmark(self, lm_id: int) -> Landmark | None:
        with self._lock:
            return self._landmarks.get(lm_id)

    def get_all_landmarks(self) -> list[Landmark]:
        with self._lock:
            return [self._landmarks[k] for k in sorted(self._landmarks)]

    @property
    def num_keyframes(self) -> int:
        with self._lock:
            return len(self._keyframes)

    @property
    def num_landmarks(self) -> int:
        with self._lock:
            return len(self._landmarks)

    def clear(self) -> None:
        """Remove everything and restart id numbering."""
        with self._lock:
            self._keyframes.clear()
            self._landmarks.clear()
            self._next_keyframe_id = 0
            self._next_landmark_id = 0
