"""Map data: keyframes, landmarks and the covisibility graph."""

from .graph_node import GraphNode, add_loop_edge_pair
from .keyframe import ROOT_KEYFRAME_ID, Keyframe
from .landmark import Landmark
from .map_database import MapDatabase

__all__ = [
    "Keyframe",
    "ROOT_KEYFRAME_ID",
    "Landmark",
    "GraphNode",
    "add_loop_edge_pair",
    "MapDatabase",
]
