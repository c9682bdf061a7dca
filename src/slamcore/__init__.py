"""slamcore - covisibility graph and Sim3 estimation for visual SLAM maps."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import Camera, EquirectangularCamera, PerspectiveCamera, create_camera
from .config import CameraConfig, FeatureConfig, Sim3Config, SlamConfig, load_config
from .data import GraphNode, Keyframe, Landmark, MapDatabase, add_loop_edge_pair
from .exceptions import ConfigError, ContractViolationError, SlamCoreError
from .feature import QuadtreeNode, distribute_keypoints_via_tree
from .geometry import SE3, Sim3
from .mapping import (
    KeyframeEraseMessage,
    KeyframeInsertMessage,
    LoopEdgeMessage,
    MapUpdater,
)
from .solve import Sim3Result, Sim3Solver, compute_sim3
from .visualization import RerunVisualizer

__all__ = [
    "__version__",
    # Geometry
    "SE3",
    "Sim3",
    # Camera
    "Camera",
    "PerspectiveCamera",
    "EquirectangularCamera",
    "create_camera",
    # Map data
    "Keyframe",
    "Landmark",
    "GraphNode",
    "add_loop_edge_pair",
    "MapDatabase",
    # Solvers
    "Sim3Solver",
    "Sim3Result",
    "compute_sim3",
    # Features
    "QuadtreeNode",
    "distribute_keypoints_via_tree",
    # Map updates
    "MapUpdater",
    "KeyframeInsertMessage",
    "KeyframeEraseMessage",
    "LoopEdgeMessage",
    # Configuration
    "SlamConfig",
    "CameraConfig",
    "Sim3Config",
    "FeatureConfig",
    "load_config",
    # Errors
    "SlamCoreError",
    "ContractViolationError",
    "ConfigError",
    # Visualization
    "RerunVisualizer",
]
