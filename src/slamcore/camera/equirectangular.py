"""Equirectangular (spherical panorama) camera model."""

from __future__ import annotations

import numpy as np

from .base import Camera


class EquirectangularCamera(Camera):
    """Maps bearings to longitude/latitude over the full sphere.

    Every direction has an image, so projection only fails for a point
    sitting exactly at the camera centre.
    """

    def __init__(self, name: str, cols: int, rows: int) -> None:
        super().__init__(name=name, model="equirectangular", cols=cols, rows=rows)

    def bearing_to_pixel(self, bearings: np.ndarray) -> np.ndarray:
        """Convert Nx3 unit bearings to Nx2 pixel coordinates.

        Uses the layout of "From Google Street View to 3D City Models"
        (ICCVW 2009): longitude grows to the right, latitude upward.
        """
        bearings = np.asarray(bearings, dtype=np.float64).reshape(-1, 3)
        latitude = -np.arcsin(np.clip(bearings[:, 1], -1.0, 1.0))
        longitude = np.arctan2(bearings[:, 0], bearings[:, 2])
        return np.stack(
            [
                self.cols * (0.5 + longitude / (2.0 * np.pi)),
                self.rows * (0.5 - latitude / np.pi),
            ],
            axis=1,
        )

    def reproject_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pos_w: np.ndarray,
    ) -> tuple[np.ndarray, float, bool]:
        reprojected, valid = self.reproject_points_to_image(rot_cw, trans_cw, pos_w)
        return reprojected[0], -1.0, bool(valid[0])

    def reproject_points_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pts_w: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        pts_w = np.asarray(pts_w, dtype=np.float64).reshape(-1, 3)
        pts_c = pts_w @ np.asarray(rot_cw).T + trans_cw

        norms = np.linalg.norm(pts_c, axis=1)
        valid = norms > 0.0
        reprojected = np.full((len(pts_c), 2), np.nan)
        if np.any(valid):
            bearings = pts_c[valid] / norms[valid, None]
            reprojected[valid] = self.bearing_to_pixel(bearings)
        return reprojected, valid
