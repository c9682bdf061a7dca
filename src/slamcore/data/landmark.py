"""Landmarks: triangulated 3D points and the keyframes observing them."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .keyframe import Keyframe


class Landmark:
    """A 3D point in the world with its keyframe observations.

    Each observing keyframe records the index of the keypoint that
    measured the landmark. All state is guarded by the landmark's own lock.

    Attributes:
        id: Unique identifier
    """

    def __init__(self, id: int, pos_w: np.ndarray) -> None:
        self.id = id
        self._lock = threading.Lock()
        self._pos_w = np.asarray(pos_w, dtype=np.float64).flatten()
        self._observations: dict[Keyframe, int] = {}
        self._will_be_erased = False

    def get_pos_in_world(self) -> np.ndarray:
        """Return a copy of the world position."""
        with self._lock:
            return self._pos_w.copy()

    def set_pos_in_world(self, pos_w: np.ndarray) -> None:
        """Update the world position (after optimisation)."""
        with self._lock:
            self._pos_w = np.asarray(pos_w, dtype=np.float64).flatten()

    def add_observation(self, keyfrm: Keyframe, idx: int) -> None:
        """Record that ``keyfrm`` observes this landmark at keypoint ``idx``."""
        with self._lock:
            self._observations[keyfrm] = idx

    def erase_observation(self, keyfrm: Keyframe) -> None:
        """Forget the observation made by ``keyfrm`` (no-op if absent)."""
        with self._lock:
            self._observations.pop(keyfrm, None)

    def get_observations(self) -> dict[Keyframe, int]:
        """Return a snapshot of keyframe -> keypoint index."""
        with self._lock:
            return dict(self._observations)

    def get_index_in_keyframe(self, keyfrm: Keyframe) -> int:
        """Return the keypoint index in ``keyfrm``, or -1 if not observed."""
        with self._lock:
            return self._observations.get(keyfrm, -1)

    def is_observed_in_keyframe(self, keyfrm: Keyframe) -> bool:
        with self._lock:
            return keyfrm in self._observations

    @property
    def num_observations(self) -> int:
        with self._lock:
            return len(self._observations)

    def will_be_erased(self) -> bool:
        """Return True once erasure has been requested."""
        with self._lock:
            return self._will_be_erased

    def prepare_for_erasing(self) -> None:
        """Flag the landmark and detach it from every observing keyframe."""
        with self._lock:
            self._will_be_erased = True
            observations = self._observations
            self._observations = {}

        for keyfrm, idx in observations.items():
            keyfrm.erase_landmark_with_index(idx)

    def __repr__(self) -> str:
        return f"Landmark(id={self.id}, num_observations={self.num_observations})"
