"""Quadtree bucketing of keypoints to spread them evenly over an image.

Dense, high-response corners tend to cluster on a few textured patches.
Recursively splitting the image into quadrants and keeping the best
keypoint per cell yields a spatially uniform subset.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import cv2


@dataclass(eq=False)
class QuadtreeNode:
    """A rectangular pixel cell and the keypoints falling into it.

    Attributes:
        pt_begin: Top-left corner (x, y), inclusive
        pt_end: Bottom-right corner (x, y)
        keypts: Keypoints bucketed into this cell
        is_leaf: True once the cell holds a single keypoint
    """

    pt_begin: tuple[int, int]
    pt_end: tuple[int, int]
    keypts: list[cv2.KeyPoint] = field(default_factory=list)
    is_leaf: bool = False

    @property
    def size(self) -> int:
        return len(self.keypts)

    def divide_node(self) -> tuple[QuadtreeNode, QuadtreeNode, QuadtreeNode, QuadtreeNode]:
        """Split into top-left, top-right, bottom-left and bottom-right cells.

        A keypoint lying exactly on a midline goes to the right/bottom cell.
        """
        begin_x, begin_y = self.pt_begin
        end_x, end_y = self.pt_end

        half_x = math.ceil((end_x - begin_x) / 2.0)
        half_y = math.ceil((end_y - begin_y) / 2.0)
        mid_x = begin_x + half_x
        mid_y = begin_y + half_y

        child_nodes = (
            QuadtreeNode(pt_begin=(begin_x, begin_y), pt_end=(mid_x, mid_y)),
            QuadtreeNode(pt_begin=(mid_x, begin_y), pt_end=(end_x, mid_y)),
            QuadtreeNode(pt_begin=(begin_x, mid_y), pt_end=(mid_x, end_y)),
            QuadtreeNode(pt_begin=(mid_x, mid_y), pt_end=(end_x, end_y)),
        )

        for keypt in self.keypts:
            idx = 0
            if mid_x <= keypt.pt[0]:
                idx += 1
            if mid_y <= keypt.pt[1]:
                idx += 2
            child_nodes[idx].keypts.append(keypt)

        for child in child_nodes:
            child.is_leaf = child.size == 1

        return child_nodes


def initialize_nodes(
    keypts: Sequence[cv2.KeyPoint],
    min_x: int,
    max_x: int,
    min_y: int,
    max_y: int,
) -> list[QuadtreeNode]:
    """Cover the region with roughly square cells laid out horizontally.

    Empty cells are dropped; cells holding one keypoint are leaves.
    """
    width = max_x - min_x
    height = max_y - min_y
    num_x_grid = max(1, round(width / height)) if height > 0 else 1
    delta_x = width / num_x_grid

    nodes = [
        QuadtreeNode(
            pt_begin=(min_x + round(delta_x * i), min_y),
            pt_end=(min_x + round(delta_x * (i + 1)), max_y),
        )
        for i in range(num_x_grid)
    ]

    for keypt in keypts:
        idx = int((keypt.pt[0] - min_x) / delta_x) if delta_x > 0 else 0
        nodes[min(max(idx, 0), num_x_grid - 1)].keypts.append(keypt)

    nodes = [node for node in nodes if node.size > 0]
    for node in nodes:
        node.is_leaf = node.size == 1
    return nodes


def distribute_keypoints_via_tree(
    keypts: Sequence[cv2.KeyPoint],
    min_x: int,
    max_x: int,
    min_y: int,
    max_y: int,
    num_keypts: int,
) -> list[cv2.KeyPoint]:
    """Select about ``num_keypts`` keypoints spread evenly over the region.

    Cells are split until there are as many non-empty cells as requested
    (or nothing can be split any more). Once a full round of splits would
    overshoot, the most populated cells are split first. Each final cell
    contributes its highest-response keypoint.

    Args:
        keypts: Candidate keypoints
        min_x: Left border of the region
        max_x: Right border of the region
        min_y: Top border of the region
        max_y: Bottom border of the region
        num_keypts: Desired number of keypoints

    Returns:
        Selected keypoints
    """
    if not keypts or num_keypts <= 0:
        return []

    nodes = initialize_nodes(keypts, min_x, max_x, min_y, max_y)

    is_filled = False
    dividable: list[QuadtreeNode] = []

    while True:
        prev_size = len(nodes)
        next_nodes: list[QuadtreeNode] = []
        dividable = []

        for node in nodes:
            if node.is_leaf:
                next_nodes.append(node)
                continue
            for child in node.divide_node():
                if child.size > 0:
                    next_nodes.append(child)
                    if child.size > 1:
                        dividable.append(child)
        nodes = next_nodes

        if num_keypts <= len(nodes) or len(nodes) == prev_size:
            is_filled = True
            break

        # each split adds at most three cells
        if num_keypts < len(nodes) + 3 * len(dividable):
            break

    while not is_filled:
        prev_size = len(nodes)
        prev_dividable = sorted(dividable, key=lambda n: n.size, reverse=True)
        dividable = []

        for node in prev_dividable:
            nodes.remove(node)
            for child in node.divide_node():
                if child.size > 0:
                    nodes.append(child)
                    if child.size > 1:
                        dividable.append(child)

            if num_keypts <= len(nodes):
                is_filled = True
                break

        if is_filled or len(nodes) == prev_size or not dividable:
            break

    return [max(node.keypts, key=lambda kp: kp.response) for node in nodes]
