"""Tests for Horn's closed-form Sim3 and the RANSAC solver around it."""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.spatial.transform import Rotation

from conftest import LEVEL_SIGMA_SQ, MapBuilder
from slamcore.camera import EquirectangularCamera
from slamcore.config import Sim3Config
from slamcore.data import Landmark
from slamcore.geometry import Sim3
from slamcore.solve import CHI_SQ_2D, Sim3Solver, compute_sim3

TRUE_SIM3_21 = Sim3(
    rotation=Rotation.from_rotvec([0.02, 0.1, -0.03]).as_matrix(),
    translation=np.array([0.3, -0.2, 0.5]),
    scale=1.5,
)


def make_scene(builder: MapBuilder, num_points: int, outlier_ratio: float, seed: int):
    """Two keyframes whose matched landmarks differ by ``TRUE_SIM3_21``.

    Both keyframes sit at the world origin, so landmark positions are also
    camera-frame positions. Outliers are shifted sideways in frame 2.

    Returns:
        Tuple of (keyframe 1, keyframe 2, matched landmark per keypoint of
        keyframe 1, inlier mask)
    """
    rng = np.random.default_rng(seed)
    keyfrm_1 = builder.add_keyframe()
    keyfrm_2 = builder.add_keyframe()

    pts_1 = np.column_stack(
        [
            rng.uniform(-2.0, 2.0, num_points),
            rng.uniform(-1.5, 1.5, num_points),
            rng.uniform(4.0, 8.0, num_points),
        ]
    )
    pts_2 = TRUE_SIM3_21.transform_points(pts_1)

    is_inlier = rng.random(num_points) >= outlier_ratio
    shifts = rng.uniform(1.0, 2.0, (num_points, 2)) * rng.choice([-1.0, 1.0], (num_points, 2))
    pts_2[~is_inlier, :2] += shifts[~is_inlier]

    matched = [None] * keyfrm_1.num_keypoints
    for idx, (pos_1, pos_2) in enumerate(zip(pts_1, pts_2)):
        lm_1 = Landmark(builder.map_db.issue_landmark_id(), pos_1)
        lm_2 = Landmark(builder.map_db.issue_landmark_id(), pos_2)
        keyfrm_1.add_landmark(lm_1, idx)
        lm_1.add_observation(keyfrm_1, idx)
        keyfrm_2.add_landmark(lm_2, idx)
        lm_2.add_observation(keyfrm_2, idx)
        matched[idx] = lm_2

    return keyfrm_1, keyfrm_2, matched, is_inlier


def assert_sim3_close(actual: Sim3, expected: Sim3, atol: float = 1e-6) -> None:
    assert actual.scale == pytest.approx(expected.scale, abs=atol)
    assert_allclose(actual.rotation, expected.rotation, atol=atol)
    assert_allclose(actual.translation, expected.translation, atol=atol)


class TestComputeSim3:
    """Closed-form alignment of point sets."""

    def test_scale_and_translation(self):
        """Points doubled and shifted along x."""
        pts_1 = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        pts_2 = np.array([[5.0, 0.0, 0.0], [7.0, 0.0, 0.0], [5.0, 2.0, 0.0]])

        sim3_21, sim3_12 = compute_sim3(pts_1, pts_2)

        assert_allclose(sim3_21.rotation, np.eye(3), atol=1e-9)
        assert sim3_21.scale == pytest.approx(2.0)
        assert_allclose(sim3_21.translation, [5.0, 0.0, 0.0], atol=1e-9)

        assert_allclose(sim3_12.rotation, np.eye(3), atol=1e-9)
        assert sim3_12.scale == pytest.approx(0.5)
        assert_allclose(sim3_12.translation, [-2.5, 0.0, 0.0], atol=1e-9)

    def test_fix_scale(self):
        pts_1 = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        pts_2 = 2.0 * pts_1 + np.array([5.0, 0.0, 0.0])

        sim3_21, sim3_12 = compute_sim3(pts_1, pts_2, fix_scale=True)

        assert sim3_21.scale == 1.0
        assert sim3_12.scale == 1.0
        assert_allclose(sim3_21.rotation, np.eye(3), atol=1e-9)

    @pytest.mark.parametrize("seed", range(5))
    def test_recovers_random_similarity(self, seed: int):
        rng = np.random.default_rng(seed)
        expected = Sim3(
            rotation=Rotation.from_rotvec(rng.normal(size=3)).as_matrix(),
            translation=rng.normal(size=3),
            scale=rng.uniform(0.2, 5.0),
        )
        pts_1 = rng.normal(size=(10, 3))
        pts_2 = expected.transform_points(pts_1)

        sim3_21, sim3_12 = compute_sim3(pts_1, pts_2)

        assert_sim3_close(sim3_21, expected)
        assert_sim3_close(sim3_12, expected.inverse())

    def test_inverse_composes_to_identity(self):
        rng = np.random.default_rng(42)
        pts_1 = rng.normal(size=(6, 3))
        pts_2 = TRUE_SIM3_21.transform_points(pts_1)

        sim3_21, sim3_12 = compute_sim3(pts_1, pts_2)

        assert_sim3_close(sim3_12 @ sim3_21, Sim3.identity(), atol=1e-9)
        assert_sim3_close(sim3_21 @ sim3_12, Sim3.identity(), atol=1e-9)

    def test_minimal_sample(self):
        """Three non-collinear points determine the transform."""
        pts_1 = np.array([[0.0, 0.0, 4.0], [1.0, 0.0, 5.0], [0.0, 1.0, 6.0]])
        pts_2 = TRUE_SIM3_21.transform_points(pts_1)

        sim3_21, _ = compute_sim3(pts_1, pts_2)

        assert_sim3_close(sim3_21, TRUE_SIM3_21)

    def test_coincident_points_give_non_finite_scale(self):
        pts = np.ones((3, 3))

        sim3_21, sim3_12 = compute_sim3(pts, pts)

        assert not np.isfinite(sim3_21.scale)
        assert not np.isfinite(sim3_12.scale)


class TestSim3Solver:
    """Correspondence filtering, inlier counting and RANSAC."""

    def test_recovers_transform_with_outliers(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, is_inlier = make_scene(builder, 100, 0.3, seed=0)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=20, rng=0)

        result = solver.find_via_ransac(200)

        assert result.is_valid
        assert solver.solution_is_valid
        assert result.num_common_pts == 100
        assert result.num_inliers == int(is_inlier.sum())
        np.testing.assert_array_equal(result.inliers, is_inlier)
        assert_sim3_close(solver.get_best_sim3_21(), TRUE_SIM3_21)
        assert_sim3_close(solver.get_best_sim3_12(), TRUE_SIM3_21.inverse())

    def test_fix_scale_on_metric_scene(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, _, _ = make_scene(builder, 0, 0.0, seed=0)
        rng = np.random.default_rng(3)
        rigid_21 = Sim3(TRUE_SIM3_21.rotation, TRUE_SIM3_21.translation, 1.0)

        matched = [None] * keyfrm_1.num_keypoints
        for idx in range(40):
            pos_1 = np.array([rng.uniform(-2, 2), rng.uniform(-1.5, 1.5), rng.uniform(4, 8)])
            lm_1 = Landmark(builder.map_db.issue_landmark_id(), pos_1)
            pos_2 = rigid_21.transform_points(pos_1)[0]
            lm_2 = Landmark(builder.map_db.issue_landmark_id(), pos_2)
            keyfrm_1.add_landmark(lm_1, idx)
            lm_1.add_observation(keyfrm_1, idx)
            keyfrm_2.add_landmark(lm_2, idx)
            lm_2.add_observation(keyfrm_2, idx)
            matched[idx] = lm_2

        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, fix_scale=True, rng=1)
        result = solver.find_via_ransac(50)

        assert result.is_valid
        assert result.num_inliers == 40
        assert result.sim3_21.scale == 1.0
        assert_sim3_close(result.sim3_21, rigid_21)

    def test_from_config(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 10, 0.0, seed=1)
        config = Sim3Config(fix_scale=False, min_num_inliers=50, max_num_iterations=10)

        solver = Sim3Solver.from_config(keyfrm_1, keyfrm_2, matched, config)
        result = solver.find_via_ransac(config.max_num_iterations)

        assert not result.is_valid

    def test_too_few_correspondences_skip_sampling(self, builder: MapBuilder, monkeypatch):
        """No RANSAC iteration runs when the result is invalid anyway."""

        def fail(*args, **kwargs):
            raise AssertionError("sampling should not happen")

        monkeypatch.setattr("slamcore.solve.sim3_solver.create_random_array", fail)

        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 2, 0.0, seed=2)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=0)
        result = solver.find_via_ransac(100)
        assert not result.is_valid
        assert result.num_common_pts == 2

        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 15, 0.0, seed=2)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=20)
        result = solver.find_via_ransac(100)
        assert not result.is_valid

    def test_invalid_result_is_zeroed(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 2, 0.0, seed=3)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched)

        result = solver.find_via_ransac(10)

        assert not solver.solution_is_valid
        assert result.num_inliers == 0
        assert solver.get_best_sim3_21().scale == 0.0
        assert_allclose(solver.get_best_sim3_21().rotation, np.zeros((3, 3)))
        assert_allclose(solver.get_best_sim3_12().translation, np.zeros(3))

    def test_insufficient_inliers_is_invalid(self, builder: MapBuilder):
        """Mostly outliers: the best transform has too little support."""
        keyfrm_1, keyfrm_2, matched, is_inlier = make_scene(builder, 30, 0.9, seed=4)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=20, rng=0)

        result = solver.find_via_ransac(100)

        assert is_inlier.sum() < 20
        assert not result.is_valid

    def test_degenerate_samples_are_skipped(self, builder: MapBuilder):
        keyfrm_1 = builder.add_keyframe()
        keyfrm_2 = builder.add_keyframe()
        matched = [None] * keyfrm_1.num_keypoints
        for idx in range(5):
            lm_1 = Landmark(builder.map_db.issue_landmark_id(), [0.0, 0.0, 5.0])
            lm_2 = Landmark(builder.map_db.issue_landmark_id(), [0.0, 0.0, 5.0])
            keyfrm_1.add_landmark(lm_1, idx)
            lm_1.add_observation(keyfrm_1, idx)
            keyfrm_2.add_landmark(lm_2, idx)
            lm_2.add_observation(keyfrm_2, idx)
            matched[idx] = lm_2

        result = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=3).find_via_ransac(20)

        assert not result.is_valid

    def test_correspondence_filtering(self, builder: MapBuilder):
        """Missing, erased and unobserved landmarks are not used."""
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 8, 0.0, seed=5)
        matched = list(matched)

        matched[1] = None
        matched[3].prepare_for_erasing()
        matched[4].erase_observation(keyfrm_2)
        keyfrm_1.get_landmark(6).prepare_for_erasing()
        keyfrm_1.erase_landmark_with_index(7)

        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched)

        assert solver.num_common_pts == 3
        np.testing.assert_array_equal(solver.matched_indices_1, [0, 2, 5])
        np.testing.assert_array_equal(solver.matched_indices_2, [0, 2, 5])

    def test_count_inliers_requires_both_directions(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 20, 0.0, seed=6)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched)
        true_12 = TRUE_SIM3_21.inverse()
        wrong_12 = Sim3(true_12.rotation, true_12.translation + [1.0, 0.0, 0.0], true_12.scale)

        num_inliers, inliers = solver.count_inliers(TRUE_SIM3_21, true_12)
        assert num_inliers == 20
        assert inliers.all()

        num_inliers, inliers = solver.count_inliers(TRUE_SIM3_21, wrong_12)
        assert num_inliers == 0
        assert not inliers.any()

    def test_inlier_gate_scales_with_octave(self, builder: MapBuilder, camera):
        """A 4 px error fails the finest octave's gate but passes a coarser one."""
        depth = 5.0
        offset = 4.0 * depth / camera.fx

        def count_with_octave(octave: int) -> int:
            keyfrm_1 = builder.add_keyframe()
            keyfrm_2 = builder.add_keyframe()
            keyfrm_1.undist_keypts[0].octave = octave
            keyfrm_2.undist_keypts[0].octave = octave
            matched = [None] * keyfrm_1.num_keypoints
            for idx, x in enumerate([0.0, 1.0, -1.0]):
                lm_1 = Landmark(builder.map_db.issue_landmark_id(), [x, 0.5, depth])
                lm_2 = Landmark(builder.map_db.issue_landmark_id(), [x, 0.5, depth])
                keyfrm_1.add_landmark(lm_1, idx)
                lm_1.add_observation(keyfrm_1, idx)
                keyfrm_2.add_landmark(lm_2, idx)
                lm_2.add_observation(keyfrm_2, idx)
                matched[idx] = lm_2
            # shift the first point sideways in frame 1 only
            lm_1 = keyfrm_1.get_landmark(0)
            lm_1.set_pos_in_world(lm_1.get_pos_in_world() + [offset, 0.0, 0.0])
            assert_allclose(lm_1.get_pos_in_world(), [offset, 0.5, depth])

            solver = Sim3Solver(keyfrm_1, keyfrm_2, matched)
            num_inliers, inliers = solver.count_inliers(Sim3.identity(), Sim3.identity())
            assert inliers[1:].all()
            return num_inliers

        # 16 px^2 against gates of 9.21 (octave 0) and 9.21 * 1.2^6 (octave 3)
        assert 16.0 > CHI_SQ_2D * LEVEL_SIGMA_SQ[0]
        assert 16.0 < CHI_SQ_2D * LEVEL_SIGMA_SQ[3]
        assert count_with_octave(0) == 2
        assert count_with_octave(3) == 3

    def test_match_list_must_cover_every_keypoint(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 5, 0.0, seed=7)

        with pytest.raises(ValueError):
            Sim3Solver(keyfrm_1, keyfrm_2, matched[:5])

    def test_points_behind_camera_are_outliers(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 10, 0.0, seed=8)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched)
        flip = Sim3(np.diag([1.0, -1.0, -1.0]), np.zeros(3), 1.0)

        num_inliers, _ = solver.count_inliers(flip, flip.inverse())

        assert num_inliers == 0

    def test_equirectangular_camera(self):
        builder = MapBuilder(EquirectangularCamera(name="pano", cols=1920, rows=960))
        keyfrm_1, keyfrm_2, matched, is_inlier = make_scene(builder, 60, 0.2, seed=9)
        solver = Sim3Solver(keyfrm_1, keyfrm_2, matched, min_num_inliers=20, rng=4)

        result = solver.find_via_ransac(200)

        assert result.is_valid
        np.testing.assert_array_equal(result.inliers, is_inlier)
        assert_sim3_close(result.sim3_21, TRUE_SIM3_21)

    def test_same_seed_same_result(self, builder: MapBuilder):
        keyfrm_1, keyfrm_2, matched, _ = make_scene(builder, 50, 0.4, seed=10)

        results = [
            Sim3Solver(keyfrm_1, keyfrm_2, matched, rng=123).find_via_ransac(30)
            for _ in range(2)
        ]

        assert results[0].is_valid == results[1].is_valid
        assert results[0].num_inliers == results[1].num_inliers
        np.testing.assert_array_equal(results[0].inliers, results[1].inliers)
