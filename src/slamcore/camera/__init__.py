"""Camera models used to reproject landmarks into keyframes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import Camera
from .equirectangular import EquirectangularCamera
from .perspective import PerspectiveCamera

if TYPE_CHECKING:
    from ..config import CameraConfig


def create_camera(config: CameraConfig) -> Camera:
    """Build the camera model described by ``config``.

    Raises:
        ValueError: If the model name is not supported
    """
    if config.model == "perspective":
        return PerspectiveCamera(
            name=config.name,
            cols=config.cols,
            rows=config.rows,
            fx=config.fx,
            fy=config.fy,
            cx=config.cx,
            cy=config.cy,
            focal_x_baseline=config.focal_x_baseline,
        )
    if config.model == "equirectangular":
        return EquirectangularCamera(
            name=config.name, cols=config.cols, rows=config.rows
        )
    raise ValueError(f"Unsupported camera model: {config.model}")


__all__ = [
    "Camera",
    "PerspectiveCamera",
    "EquirectangularCamera",
    "create_camera",
]
