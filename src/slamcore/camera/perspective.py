"""Pinhole camera model, monocular or rectified stereo."""

from __future__ import annotations

import numpy as np

from .base import Camera


class PerspectiveCamera(Camera):
    """Pinhole projection of undistorted keypoints.

    With a non-zero ``focal_x_baseline`` (fx times the stereo baseline,
    in pixel-metres) the x coordinate in the right rectified image is
    reported as well.
    """

    def __init__(
        self,
        name: str,
        cols: int,
        rows: int,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        focal_x_baseline: float = 0.0,
    ) -> None:
        super().__init__(name=name, model="perspective", cols=cols, rows=rows)
        self.fx = float(fx)
        self.fy = float(fy)
        self.cx = float(cx)
        self.cy = float(cy)
        self.focal_x_baseline = float(focal_x_baseline)

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return the 3x3 intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def reproject_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pos_w: np.ndarray,
    ) -> tuple[np.ndarray, float, bool]:
        pos_c = np.asarray(rot_cw) @ np.asarray(pos_w, dtype=np.float64) + trans_cw

        if pos_c[2] <= 0.0:
            return np.full(2, np.nan), -1.0, False

        z_inv = 1.0 / pos_c[2]
        reproj = np.array(
            [
                self.fx * pos_c[0] * z_inv + self.cx,
                self.fy * pos_c[1] * z_inv + self.cy,
            ]
        )
        x_right = (
            reproj[0] - self.focal_x_baseline * z_inv
            if self.focal_x_baseline > 0.0
            else -1.0
        )
        return reproj, float(x_right), True

    def reproject_points_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pts_w: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        pts_w = np.asarray(pts_w, dtype=np.float64).reshape(-1, 3)
        pts_c = pts_w @ np.asarray(rot_cw).T + trans_cw

        valid = pts_c[:, 2] > 0.0
        reprojected = np.full((len(pts_c), 2), np.nan)
        z_inv = 1.0 / pts_c[valid, 2]
        reprojected[valid, 0] = self.fx * pts_c[valid, 0] * z_inv + self.cx
        reprojected[valid, 1] = self.fy * pts_c[valid, 1] * z_inv + self.cy
        return reprojected, valid
