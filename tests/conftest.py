"""Shared fixtures: a camera and a builder for small synthetic maps."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from slamcore.camera import PerspectiveCamera
from slamcore.data import Keyframe, Landmark, MapDatabase
from slamcore.geometry import SE3

# Variance per octave for a scale factor of 1.2
LEVEL_SIGMA_SQ = [1.2 ** (2 * level) for level in range(8)]


def make_keypoints(num: int, octave: int = 0) -> list[cv2.KeyPoint]:
    """Keypoints on a regular grid; only the octave matters to the graph."""
    return [
        cv2.KeyPoint(
            float(10 + (i % 60) * 10), float(10 + (i // 60) * 10), 31.0, -1.0, 0.0, octave
        )
        for i in range(num)
    ]


class MapBuilder:
    """Creates keyframes and landmarks observed by chosen keyframe sets."""

    def __init__(self, camera: PerspectiveCamera) -> None:
        self.map_db = MapDatabase()
        self.camera = camera
        self._next_free_idx: dict[Keyframe, int] = {}

    def add_keyframe(self, num_keypoints: int = 600, pose: SE3 | None = None) -> Keyframe:
        keyfrm = Keyframe(
            id=self.map_db.issue_keyframe_id(),
            pose_cw=pose if pose is not None else SE3.identity(),
            keypoints=make_keypoints(num_keypoints),
            level_sigma_sq=LEVEL_SIGMA_SQ,
            camera=self.camera,
        )
        self.map_db.add_keyframe(keyfrm)
        self._next_free_idx[keyfrm] = 0
        return keyfrm

    def share_landmarks(self, keyframes: list[Keyframe], count: int) -> list[Landmark]:
        """Create ``count`` landmarks each observed by all ``keyframes``."""
        landmarks = []
        for _ in range(count):
            lm = Landmark(self.map_db.issue_landmark_id(), np.zeros(3))
            for keyfrm in keyframes:
                idx = self._next_free_idx[keyfrm]
                self._next_free_idx[keyfrm] += 1
                keyfrm.add_landmark(lm, idx)
                lm.add_observation(keyfrm, idx)
            self.map_db.add_landmark(lm)
            landmarks.append(lm)
        return landmarks


def connect(keyfrm_1: Keyframe, keyfrm_2: Keyframe, weight: int) -> None:
    """Add a covisibility edge in both directions."""
    keyfrm_1.graph_node.add_connection(keyfrm_2, weight)
    keyfrm_2.graph_node.add_connection(keyfrm_1, weight)


def attach(child: Keyframe, parent: Keyframe) -> None:
    """Make ``parent`` the spanning parent of ``child``."""
    child.graph_node.set_spanning_parent(parent)
    parent.graph_node.add_spanning_child(child)


@pytest.fixture
def camera() -> PerspectiveCamera:
    """A 640x480 pinhole camera."""
    return PerspectiveCamera(
        name="test", cols=640, rows=480, fx=500.0, fy=500.0, cx=320.0, cy=240.0
    )


@pytest.fixture
def builder(camera: PerspectiveCamera) -> MapBuilder:
    return MapBuilder(camera)
