#!/usr/bin/env python3
"""Demo of the keyframe graph on a synthetic circular trajectory.

A camera walks once around a ring of landmarks, looking outward. Every
keyframe is handed to the map updater, which builds the covisibility
graph and grows the spanning tree. Some keyframes are culled along the
way, then the last keyframe is matched against the first one: the Sim3
solver confirms the loop and a loop edge is registered.

Usage:
    uv run python examples/graph_demo.py [config.yaml]

Without a config file a 640x480 pinhole camera is used.
"""

import logging
import sys

import cv2
import numpy as np

from slamcore import (
    Camera,
    CameraConfig,
    Keyframe,
    KeyframeEraseMessage,
    KeyframeInsertMessage,
    Landmark,
    LoopEdgeMessage,
    MapDatabase,
    MapUpdater,
    RerunVisualizer,
    SE3,
    SlamConfig,
    Sim3Solver,
    create_camera,
    distribute_keypoints_via_tree,
    load_config,
)

# Variance per octave for a scale factor of 1.2
LEVEL_SIGMA_SQ = [1.2 ** (2 * level) for level in range(8)]


def look_outward(angle: float, radius: float) -> SE3:
    """Camera-from-world pose on a circle, optical axis pointing away from the centre."""
    center = np.array([radius * np.cos(angle), 0.0, radius * np.sin(angle)])
    z_axis = np.array([np.cos(angle), 0.0, np.sin(angle)])
    y_axis = np.array([0.0, 1.0, 0.0])
    x_axis = np.cross(y_axis, z_axis)
    rot_cw = np.stack([x_axis, y_axis, z_axis])
    return SE3(rotation=rot_cw, translation=-rot_cw @ center)


def make_keyframe(
    kf_id: int,
    pose_cw: SE3,
    landmarks: list[Landmark],
    camera: Camera,
    max_num_keypoints: int,
    rng: np.random.Generator,
) -> Keyframe:
    """Observe the visible landmarks, keeping an evenly spread subset."""
    positions = np.array([lm.get_pos_in_world() for lm in landmarks])
    pixels, valid = camera.reproject_points_to_image(
        pose_cw.rotation, pose_cw.translation, positions
    )
    in_image = (
        valid
        & (pixels[:, 0] >= 0)
        & (pixels[:, 0] < camera.cols)
        & (pixels[:, 1] >= 0)
        & (pixels[:, 1] < camera.rows)
    )

    candidates = []
    for lm_idx in np.flatnonzero(in_image):
        x, y = pixels[lm_idx]
        # class_id carries the landmark index through the selection
        candidates.append(
            cv2.KeyPoint(float(x), float(y), 31.0, -1.0, float(rng.random()), 0, int(lm_idx))
        )

    keypts = distribute_keypoints_via_tree(
        candidates, 0, camera.cols, 0, camera.rows, max_num_keypoints
    )

    keyfrm = Keyframe(kf_id, pose_cw, keypts, LEVEL_SIGMA_SQ, camera)
    for idx, keypt in enumerate(keypts):
        lm = landmarks[keypt.class_id]
        keyfrm.add_landmark(lm, idx)
        lm.add_observation(keyfrm, idx)
    return keyfrm


def main() -> None:
    """Run the keyframe graph demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Configuration
    num_keyframes = 36
    num_landmarks = 2000
    trajectory_radius = 3.0
    landmark_radius = 10.0
    cull_every = 4
    enable_visualization = True

    if len(sys.argv) > 1:
        config = load_config(sys.argv[1])
    else:
        config = SlamConfig(
            camera=CameraConfig(
                name="synthetic",
                model="perspective",
                cols=640,
                rows=480,
                fx=400.0,
                fy=400.0,
                cx=320.0,
                cy=240.0,
            )
        )

    camera = create_camera(config.camera)
    rng = np.random.default_rng(0)
    map_db = MapDatabase()

    print("=" * 60)
    print("KEYFRAME GRAPH DEMO")
    print("=" * 60)
    print(f"  Camera:      {config.camera.name} ({config.camera.model})")
    print(f"  Keyframes:   {num_keyframes}")
    print(f"  Landmarks:   {num_landmarks}")
    print()

    # Landmarks on a cylinder around the trajectory
    angles = rng.uniform(0.0, 2.0 * np.pi, num_landmarks)
    heights = rng.uniform(-3.0, 3.0, num_landmarks)
    landmarks = []
    for angle, height in zip(angles, heights):
        pos_w = [landmark_radius * np.cos(angle), height, landmark_radius * np.sin(angle)]
        lm = Landmark(map_db.issue_landmark_id(), np.array(pos_w))
        map_db.add_landmark(lm)
        landmarks.append(lm)

    visualizer = RerunVisualizer("slamcore-graph-demo") if enable_visualization else None

    with MapUpdater(map_db) as updater:
        keyframes = []
        for i in range(num_keyframes):
            pose_cw = look_outward(2.0 * np.pi * i / num_keyframes, trajectory_radius)
            keyfrm = make_keyframe(
                map_db.issue_keyframe_id(),
                pose_cw,
                landmarks,
                camera,
                config.feature.max_num_keypoints,
                rng,
            )
            keyframes.append(keyfrm)
            updater.send(KeyframeInsertMessage(keyfrm))

            # Cull a keyframe once its successor has been inserted
            if i >= 2 and i % cull_every == 0 and i < num_keyframes - 2:
                updater.send(KeyframeEraseMessage(keyframes[i - 1].id))

            updater.wait_until_idle()
            if visualizer is not None:
                visualizer.log_map(map_db)

            node = keyfrm.graph_node
            parent = node.get_spanning_parent()
            print(
                f"KF {keyfrm.id:>3}  tracked {keyfrm.num_tracked_landmarks:>4}  "
                f"neighbors {node.num_connections:>2}  "
                f"parent {parent.id if parent is not None else '-':>3}"
            )

        # Loop detection between the last and the first keyframe
        current, candidate = keyframes[-1], keyframes[0]
        matched = [
            lm if lm is not None and lm.is_observed_in_keyframe(candidate) else None
            for lm in current.get_landmarks()
        ]
        solver = Sim3Solver.from_config(current, candidate, matched, config.sim3, rng=rng)
        result = solver.find_via_ransac(config.sim3.max_num_iterations)

        print()
        print(f"Loop candidate KF {current.id} -> KF {candidate.id}")
        print(f"  Correspondences: {result.num_common_pts}")
        print(f"  Inliers:         {result.num_inliers}")
        if result.is_valid:
            print(f"  Sim3:            {result.sim3_21}")
            updater.send(LoopEdgeMessage(current.id, candidate.id))
            updater.wait_until_idle()
        else:
            print("  Loop rejected")

    if visualizer is not None:
        visualizer.log_map(map_db)

    print()
    print(f"Live keyframes:  {map_db.num_keyframes}")
    num_loop_edges = sum(
        len(kf.graph_node.get_loop_edges()) for kf in map_db.get_all_keyframes()
    )
    print(f"Loop edges:      {num_loop_edges // 2}")


if __name__ == "__main__":
    main()
