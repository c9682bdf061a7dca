"""Keyframes: camera poses kept permanently as map references.

A keyframe owns its keypoints, the landmarks associated with them and
exactly one ``GraphNode`` placing it in the covisibility graph and the
spanning tree.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

import cv2
import numpy as np

from ..exceptions import ContractViolationError
from ..geometry import SE3
from .graph_node import GraphNode

if TYPE_CHECKING:
    from ..camera import Camera
    from .landmark import Landmark
    from .map_database import MapDatabase

logger = logging.getLogger(__name__)

# The first keyframe of a map roots the spanning tree
ROOT_KEYFRAME_ID = 0


class Keyframe:
    """A keyframe of the map.

    Attributes:
        id: Unique ordinal identifier
        timestamp_ns: Capture time in nanoseconds
        camera: Camera model used to reproject points into this keyframe
        undist_keypts: Undistorted keypoints (``cv2.KeyPoint``)
        level_sigma_sq: Measurement variance per pyramid octave
        graph_node: This keyframe's node in the covisibility graph
    """

    def __init__(
        self,
        id: int,
        pose_cw: SE3,
        keypoints: Sequence[cv2.KeyPoint],
        level_sigma_sq: Sequence[float],
        camera: Camera,
        timestamp_ns: int = 0,
    ) -> None:
        self.id = id
        self.timestamp_ns = timestamp_ns
        self.camera = camera
        self.undist_keypts = list(keypoints)
        self.level_sigma_sq = np.asarray(level_sigma_sq, dtype=np.float64)

        self._lock = threading.Lock()
        self._pose_cw = pose_cw
        self._landmarks: list[Landmark | None] = [None] * len(self.undist_keypts)

        # Erasure state
        self._cannot_be_erased = False
        self._should_be_erased = False
        self._will_be_erased = False

        self.graph_node = GraphNode(self)

    # Pose

    def get_pose_cw(self) -> SE3:
        with self._lock:
            return self._pose_cw

    def set_pose_cw(self, pose_cw: SE3) -> None:
        with self._lock:
            self._pose_cw = pose_cw

    def get_rotation(self) -> np.ndarray:
        """Return the world-to-camera rotation."""
        return self.get_pose_cw().rotation.copy()

    def get_translation(self) -> np.ndarray:
        """Return the world-to-camera translation."""
        return self.get_pose_cw().translation.copy()

    def get_cam_center(self) -> np.ndarray:
        """Return the camera position in the world frame."""
        return self.get_pose_cw().camera_center

    @property
    def is_root(self) -> bool:
        """True for the keyframe that roots the spanning tree."""
        return self.id == ROOT_KEYFRAME_ID

    @property
    def num_keypoints(self) -> int:
        return len(self.undist_keypts)

    # Landmark associations

    def add_landmark(self, lm: Landmark, idx: int) -> None:
        """Associate ``lm`` with keypoint ``idx``."""
        with self._lock:
            self._landmarks[idx] = lm

    def erase_landmark_with_index(self, idx: int) -> None:
        with self._lock:
            self._landmarks[idx] = None

    def erase_landmark(self, lm: Landmark) -> None:
        idx = lm.get_index_in_keyframe(self)
        if idx >= 0:
            self.erase_landmark_with_index(idx)

    def get_landmark(self, idx: int) -> Landmark | None:
        with self._lock:
            return self._landmarks[idx]

    def get_landmarks(self) -> list[Landmark | None]:
        """Return the landmark list indexed by keypoint (entries may be None)."""
        with self._lock:
            return list(self._landmarks)

    def get_valid_landmarks(self) -> list[Landmark]:
        return [
            lm for lm in self.get_landmarks() if lm is not None and not lm.will_be_erased()
        ]

    @property
    def num_tracked_landmarks(self) -> int:
        return len(self.get_valid_landmarks())

    # Erasure

    def will_be_erased(self) -> bool:
        with self._lock:
            return self._will_be_erased

    def set_not_to_be_erased(self) -> None:
        """Protect the keyframe until ``set_to_be_erased`` is called."""
        with self._lock:
            self._cannot_be_erased = True

    def set_to_be_erased(self, map_db: MapDatabase) -> None:
        """Lift the protection and carry out any pending erasure request.

        Keyframes with a loop edge stay protected forever.
        """
        if self.graph_node.has_loop_edge():
            return

        with self._lock:
            self._cannot_be_erased = False
            pending = self._should_be_erased

        if pending:
            self.prepare_for_erasing(map_db)

    def prepare_for_erasing(self, map_db: MapDatabase) -> bool:
        """Erase the keyframe from the map without fragmenting the graph.

        Returns:
            True if the keyframe was erased, False if the request was
            refused (root) or deferred (protected keyframe)

        Raises:
            ContractViolationError: If a non-root keyframe has no spanning
                parent; the map is left untouched
        """
        if self.is_root:
            logger.warning("Refusing to erase root keyframe %d", self.id)
            return False

        with self._lock:
            if self._cannot_be_erased:
                self._should_be_erased = True
                logger.debug("Keyframe %d is protected, erasure deferred", self.id)
                return False

        if self.graph_node.get_spanning_parent() is None:
            raise ContractViolationError(
                f"Keyframe {self.id} has no spanning parent and cannot be erased"
            )

        for lm in self.get_landmarks():
            if lm is not None:
                lm.erase_observation(self)

        self.graph_node.erase_all_connections()
        self.graph_node.recover_spanning_connections()

        with self._lock:
            self._landmarks = [None] * len(self.undist_keypts)
            self._will_be_erased = True

        map_db.erase_keyframe(self)
        logger.info("Erased keyframe %d", self.id)
        return True

    def __repr__(self) -> str:
        return f"Keyframe(id={self.id})"
