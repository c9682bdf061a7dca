"""Rerun-based visualization of the keyframe graph."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import rerun as rr
import rerun.blueprint as rrb

if TYPE_CHECKING:
    from ..data import Keyframe, MapDatabase


def _edge_strips(
    pairs: list[tuple[Keyframe, Keyframe]],
    centers: dict[int, np.ndarray],
) -> list[np.ndarray]:
    return [
        np.stack([centers[a.id], centers[b.id]])
        for a, b in pairs
        if a.id in centers and b.id in centers
    ]


class RerunVisualizer:
    """Rerun visualization of keyframes and their graph links.

    Entity hierarchy:
        world/
            keyframes       - Camera centres of live keyframes
            landmarks       - Landmark positions
            covisibility    - Covisibility edges above a weight (grey)
            spanning_tree   - Parent-child links (green)
            loop_edges      - Loop closure edges (red)
    """

    def __init__(self, app_name: str = "slamcore", spawn: bool = True) -> None:
        """Initialize Rerun visualization.

        Args:
            app_name: Name for the Rerun application window
            spawn: If True, automatically spawn the Rerun viewer
        """
        rr.init(app_name, spawn=spawn)
        rr.log("world", rr.ViewCoordinates.RDF, static=True)
        rr.send_blueprint(
            rrb.Blueprint(rrb.Spatial3DView(name="Keyframe graph", origin="world"))
        )

    def log_map(self, map_db: MapDatabase, min_covisibility_weight: int = 100) -> None:
        """Log the current state of the map.

        Args:
            map_db: Map to draw
            min_covisibility_weight: Covisibility edges at or below this
                weight are not drawn
        """
        keyframes = [kf for kf in map_db.get_all_keyframes() if not kf.will_be_erased()]
        centers = {kf.id: kf.get_cam_center() for kf in keyframes}

        if centers:
            rr.log(
                "world/keyframes",
                rr.Points3D(
                    np.array(list(centers.values())),
                    labels=[str(kf_id) for kf_id in centers],
                    colors=[[0, 128, 255]],
                    radii=0.05,
                ),
            )

        self._log_edges(
            "world/covisibility",
            self._covisibility_pairs(keyframes, min_covisibility_weight),
            centers,
            color=[160, 160, 160],
        )
        self._log_edges(
            "world/spanning_tree",
            self._spanning_pairs(keyframes),
            centers,
            color=[0, 255, 0],
        )
        self._log_edges(
            "world/loop_edges",
            self._loop_pairs(keyframes),
            centers,
            color=[255, 0, 0],
        )

        landmarks = [lm for lm in map_db.get_all_landmarks() if not lm.will_be_erased()]
        if landmarks:
            rr.log(
                "world/landmarks",
                rr.Points3D(
                    np.array([lm.get_pos_in_world() for lm in landmarks]),
                    colors=[[255, 255, 255]],
                    radii=0.01,
                ),
            )

    @staticmethod
    def _covisibility_pairs(
        keyframes: list[Keyframe], min_weight: int
    ) -> list[tuple[Keyframe, Keyframe]]:
        return [
            (kf, other)
            for kf in keyframes
            for other in kf.graph_node.get_covisibilities_over_weight(min_weight)
            if kf.id < other.id
        ]

    @staticmethod
    def _spanning_pairs(keyframes: list[Keyframe]) -> list[tuple[Keyframe, Keyframe]]:
        pairs = []
        for kf in keyframes:
            parent = kf.graph_node.get_spanning_parent()
            if parent is not None:
                pairs.append((kf, parent))
        return pairs

    @staticmethod
    def _loop_pairs(keyframes: list[Keyframe]) -> list[tuple[Keyframe, Keyframe]]:
        return [
            (kf, other)
            for kf in keyframes
            for other in kf.graph_node.get_loop_edges()
            if kf.id < other.id
        ]

    @staticmethod
    def _log_edges(
        entity_path: str,
        pairs: list[tuple[Keyframe, Keyframe]],
        centers: dict[int, np.ndarray],
        color: list[int],
    ) -> None:
        strips = _edge_strips(pairs, centers)
        if strips:
            rr.log(entity_path, rr.LineStrips3D(strips, colors=[color]))
        else:
            rr.log(entity_path, rr.Clear(recursive=False))
