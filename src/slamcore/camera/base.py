"""Camera projection capability shared by all camera models."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class Camera(ABC):
    """Projects 3D points into pixel coordinates.

    Model specific maths lives in the subclasses; the map and the
    solvers only go through ``reproject_to_image``.
    """

    def __init__(self, name: str, model: str, cols: int, rows: int) -> None:
        self.name = name
        self.model = model
        self.cols = int(cols)
        self.rows = int(rows)

    @abstractmethod
    def reproject_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pos_w: np.ndarray,
    ) -> tuple[np.ndarray, float, bool]:
        """Project a point through ``rot_cw @ pos_w + trans_cw`` into the image.

        ``rot_cw`` may carry a scale factor (a similarity's s * R).

        Args:
            rot_cw: 3x3 linear part of the world-to-camera transform
            trans_cw: Translation of the world-to-camera transform
            pos_w: 3D point in the source frame

        Returns:
            Tuple of (pixel (2,), x coordinate in the right image or -1,
            success). On failure the pixel is NaN.
        """

    def reproject_points_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pts_w: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project an Nx3 array of points.

        Returns:
            Tuple of (Nx2 pixel coordinates, (N,) boolean success mask)
        """
        pts_w = np.asarray(pts_w, dtype=np.float64).reshape(-1, 3)
        reprojected = np.empty((len(pts_w), 2), dtype=np.float64)
        valid = np.zeros(len(pts_w), dtype=bool)
        for i, pos_w in enumerate(pts_w):
            reprojected[i], _, valid[i] = self.reproject_to_image(
                rot_cw, trans_cw, pos_w
            )
        return reprojected, valid

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, {self.cols}x{self.rows})"
