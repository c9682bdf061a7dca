"""Configuration objects and YAML loading.

A configuration file has one section per component::

    Camera:
      name: EuRoC cam0
      model: perspective      # or equirectangular
      cols: 752
      rows: 480
      fx: 458.654
      fy: 457.296
      cx: 367.215
      cy: 248.375
      focal_x_baseline: 0.0   # fx * baseline for rectified stereo

    Sim3:
      fix_scale: false
      min_num_inliers: 20
      max_num_iterations: 200

    Feature:
      max_num_keypoints: 1000

Only ``Camera`` is required; the other sections fall back to defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

CAMERA_MODELS = ("perspective", "equirectangular")
_PERSPECTIVE_INTRINSICS = ("fx", "fy", "cx", "cy")


@dataclass
class CameraConfig:
    """Camera model and intrinsics."""

    name: str
    model: str
    cols: int
    rows: int
    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0
    focal_x_baseline: float = 0.0  # fx * baseline (stereo only)


@dataclass
class Sim3Config:
    """Configuration for similarity-transform estimation."""

    fix_scale: bool = False  # True for stereo/RGB-D rigs with metric scale
    min_num_inliers: int = 20
    max_num_iterations: int = 200


@dataclass
class FeatureConfig:
    """Configuration for keypoint distribution."""

    max_num_keypoints: int = 1000


@dataclass
class SlamConfig:
    """Top-level configuration bundle."""

    camera: CameraConfig
    sim3: Sim3Config = field(default_factory=Sim3Config)
    feature: FeatureConfig = field(default_factory=FeatureConfig)


def _section_kwargs(section: dict[str, Any], cls: type, path: Path) -> dict[str, Any]:
    """Keep the keys of ``section`` that ``cls`` knows about."""
    if not isinstance(section, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping in {path}")
    known = {f.name for f in fields(cls)}
    unknown = set(section) - known
    if unknown:
        raise ConfigError(
            f"Unknown keys {sorted(unknown)} for {cls.__name__} in {path}"
        )
    return dict(section)


def _parse_camera(section: dict[str, Any], path: Path) -> CameraConfig:
    kwargs = _section_kwargs(section, CameraConfig, path)

    for key in ("name", "model", "cols", "rows"):
        if key not in kwargs:
            raise ConfigError(f"Camera.{key} missing in {path}")

    model = kwargs["model"]
    if model not in CAMERA_MODELS:
        raise ConfigError(f"Unknown camera model '{model}' in {path}")

    if model == "perspective":
        missing = [k for k in _PERSPECTIVE_INTRINSICS if k not in kwargs]
        if missing:
            raise ConfigError(f"Invalid intrinsics in {path}: missing {missing}")

    return CameraConfig(**kwargs)


def load_config(yaml_path: str | Path) -> SlamConfig:
    """Load a configuration file.

    Args:
        yaml_path: Path to the YAML file

    Returns:
        Parsed configuration

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file content is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or "Camera" not in data:
        raise ConfigError(f"Camera section missing in {path}")

    camera = _parse_camera(data["Camera"], path)
    sim3 = Sim3Config(**_section_kwargs(data.get("Sim3", {}), Sim3Config, path))
    feature = FeatureConfig(
        **_section_kwargs(data.get("Feature", {}), FeatureConfig, path)
    )

    return SlamConfig(camera=camera, sim3=sim3, feature=feature)
