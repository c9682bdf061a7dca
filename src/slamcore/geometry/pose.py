"""Rigid (SE3) and similarity (Sim3) transforms between coordinate frames."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


def _as_rotation(R: np.ndarray) -> np.ndarray:
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Rotation must be 3x3, got {R.shape}")
    return R


def _as_translation(t: np.ndarray) -> np.ndarray:
    t = np.asarray(t, dtype=np.float64).flatten()
    if t.shape != (3,):
        raise ValueError(f"Translation must be (3,), got {t.shape}")
    return t


@dataclass
class SE3:
    """Rigid body transformation.

    Keyframe poses are stored camera-from-world, i.e. a world point maps
    into the camera frame as::

        p_camera = R @ p_world + t

    Attributes:
        rotation: 3x3 orthonormal rotation matrix
        translation: 3D translation vector
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = _as_rotation(self.rotation)
        self.translation = _as_translation(self.translation)

    @classmethod
    def identity(cls) -> SE3:
        """Create the identity transformation."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 4x4 homogeneous transformation matrix."""
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from an OpenCV Rodrigues vector and translation.

        ``cv2.solvePnP`` already returns camera-from-world, which is the
        convention used for keyframe poses, so no inversion is needed.
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    def to_matrix(self) -> np.ndarray:
        """Return the 4x4 matrix [[R, t], [0, 1]]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> SE3:
        """Return the inverse transform [R^T, -R^T @ t]."""
        R_inv = self.rotation.T
        return SE3(rotation=R_inv, translation=-R_inv @ self.translation)

    def compose(self, other: SE3) -> SE3:
        """Return self @ other (apply ``other`` first, then ``self``)."""
        return SE3(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an Nx3 array (or a single 3-vector)."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")
        return points @ self.rotation.T + self.translation

    @property
    def camera_center(self) -> np.ndarray:
        """Origin of the transformed frame expressed in the source frame.

        For a camera-from-world pose this is the camera position in the
        world: ``-R^T @ t``.
        """
        return -self.rotation.T @ self.translation

    def __matmul__(self, other: SE3) -> SE3:
        return self.compose(other)

    def __repr__(self) -> str:
        c = self.camera_center
        return f"SE3(center=[{c[0]:.3f}, {c[1]:.3f}, {c[2]:.3f}])"


@dataclass
class Sim3:
    """Similarity transformation: rotation, translation and uniform scale.

    Maps a point as ``p' = scale * R @ p + t``. The suffix convention used
    throughout the solver is ``sim3_21``: takes points from frame 1 into
    frame 2.

    Attributes:
        rotation: 3x3 rotation matrix
        translation: 3D translation vector
        scale: Uniform scale factor
    """

    rotation: np.ndarray
    translation: np.ndarray
    scale: float = 1.0

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = _as_rotation(self.rotation)
        self.translation = _as_translation(self.translation)
        self.scale = float(self.scale)

    @classmethod
    def identity(cls) -> Sim3:
        """Create the identity similarity."""
        return cls(rotation=np.eye(3), translation=np.zeros(3), scale=1.0)

    @classmethod
    def zero(cls) -> Sim3:
        """All-zero transform reported when estimation fails."""
        return cls(rotation=np.zeros((3, 3)), translation=np.zeros(3), scale=0.0)

    @classmethod
    def from_se3(cls, pose: SE3) -> Sim3:
        """Promote a rigid transform to a similarity with unit scale."""
        return cls(rotation=pose.rotation, translation=pose.translation, scale=1.0)

    @property
    def scaled_rotation(self) -> np.ndarray:
        """Return scale * R, the linear part of the transform."""
        return self.scale * self.rotation

    def to_matrix(self) -> np.ndarray:
        """Return the 4x4 matrix [[s R, t], [0, 1]]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.scaled_rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> Sim3:
        """Return the inverse similarity.

        For ``p' = s R p + t`` the inverse is ``p = (1/s) R^T p' - (1/s) R^T t``.
        """
        rot_inv = self.rotation.T
        scale_inv = 1.0 / self.scale
        return Sim3(
            rotation=rot_inv,
            translation=-scale_inv * rot_inv @ self.translation,
            scale=scale_inv,
        )

    def compose(self, other: Sim3) -> Sim3:
        """Return self @ other (apply ``other`` first, then ``self``)."""
        return Sim3(
            rotation=self.rotation @ other.rotation,
            translation=self.scale * self.rotation @ other.translation
            + self.translation,
            scale=self.scale * other.scale,
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the similarity to an Nx3 array (or a single 3-vector)."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")
        return points @ self.scaled_rotation.T + self.translation

    def __matmul__(self, other: Sim3) -> Sim3:
        return self.compose(other)

    def __repr__(self) -> str:
        t = self.translation
        return (
            f"Sim3(scale={self.scale:.4f}, "
            f"translation=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}])"
        )
