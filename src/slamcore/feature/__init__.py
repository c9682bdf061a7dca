"""Keypoint distribution helpers."""

from .quadtree import QuadtreeNode, distribute_keypoints_via_tree, initialize_nodes

__all__ = ["QuadtreeNode", "initialize_nodes", "distribute_keypoints_via_tree"]
