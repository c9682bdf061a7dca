"""Similarity transform estimation between two keyframes.

Given landmark correspondences between two keyframes (typically a loop
closure or map merge candidate), estimate the Sim3 relating their
camera frames with RANSAC over Horn's closed-form solution:

1. Express every shared landmark in both cameras' local frames
2. Repeatedly fit a Sim3 to three random correspondences
3. Count the correspondences that reproject within a chi-squared gate
   in *both* images, keeping the transform with the most inliers

Scale drifts in monocular maps, which is why a full similarity is
estimated; rigs with metric depth fix the scale to 1.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from scipy.spatial.transform import Rotation

from ..geometry import Sim3
from ..util import create_random_array

if TYPE_CHECKING:
    from ..config import Sim3Config
    from ..data import Keyframe, Landmark

logger = logging.getLogger(__name__)

# Chi-squared value at 1% significance for 2 degrees of freedom
CHI_SQ_2D = 9.21034


@dataclass
class Sim3Result:
    """Result of a RANSAC run.

    Attributes:
        is_valid: Whether enough inliers supported the best transform
        sim3_21: Transform taking frame-1 camera points into frame 2
        sim3_12: Transform taking frame-2 camera points into frame 1
        num_inliers: Inliers of the best transform
        num_common_pts: Usable correspondences
        inliers: Boolean mask over the correspondences
    """

    is_valid: bool
    sim3_21: Sim3 = field(default_factory=Sim3.zero)
    sim3_12: Sim3 = field(default_factory=Sim3.zero)
    num_inliers: int = 0
    num_common_pts: int = 0
    inliers: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=bool))


def compute_sim3(
    pts_1: np.ndarray,
    pts_2: np.ndarray,
    fix_scale: bool = False,
) -> tuple[Sim3, Sim3]:
    """Closed-form similarity between two point sets.

    Based on "Closed-form solution of absolute orientation using unit
    quaternions" (Horn, 1987).

    Args:
        pts_1: Nx3 points in frame 1 (N >= 3)
        pts_2: Nx3 corresponding points in frame 2
        fix_scale: If True the scale is fixed to 1

    Returns:
        Tuple of (sim3_21, sim3_12) with ``pts_2 ~ sim3_21(pts_1)``; the
        second is the analytical inverse of the first
    """
    pts_1 = np.asarray(pts_1, dtype=np.float64)
    pts_2 = np.asarray(pts_2, dtype=np.float64)

    centroid_1 = pts_1.mean(axis=0)
    centroid_2 = pts_2.mean(axis=0)
    ave_pts_1 = pts_1 - centroid_1
    ave_pts_2 = pts_2 - centroid_2

    # Matrix of sums of products
    M = ave_pts_1.T @ ave_pts_2
    Sxx, Sxy, Sxz = M[0]
    Syx, Syy, Syz = M[1]
    Szx, Szy, Szz = M[2]

    N = np.array(
        [
            [Sxx + Syy + Szz, Syz - Szy, Szx - Sxz, Sxy - Syx],
            [Syz - Szy, Sxx - Syy - Szz, Sxy + Syx, Szx + Sxz],
            [Szx - Sxz, Sxy + Syx, -Sxx + Syy - Szz, Syz + Szy],
            [Sxy - Syx, Szx + Sxz, Syz + Szy, -Sxx - Syy + Szz],
        ]
    )

    # N is symmetric; eigh returns eigenvalues in ascending order
    _, eigenvectors = np.linalg.eigh(N)
    q = eigenvectors[:, -1]
    q = q / np.linalg.norm(q)

    # (w, x, y, z) -> scipy's scalar-last layout
    rot_21 = Rotation.from_quat([q[1], q[2], q[3], q[0]]).as_matrix()

    with np.errstate(divide="ignore", invalid="ignore"):
        if fix_scale:
            scale_21 = np.float64(1.0)
        else:
            ave_pts_1_in_2 = ave_pts_1 @ rot_21.T
            scale_21 = np.sum(ave_pts_2 * ave_pts_1_in_2) / np.sum(ave_pts_1**2)

        trans_21 = centroid_2 - scale_21 * rot_21 @ centroid_1

        rot_12 = rot_21.T
        scale_12 = np.float64(1.0) / scale_21
        trans_12 = -scale_12 * rot_12 @ trans_21

    return (
        Sim3(rotation=rot_21, translation=trans_21, scale=scale_21),
        Sim3(rotation=rot_12, translation=trans_12, scale=scale_12),
    )


class Sim3Solver:
    """RANSAC estimator of the Sim3 between two keyframes.

    Built once per candidate pair; all per-correspondence data is
    computed at construction. Instances share no state, so different
    pairs can be solved on different threads.
    """

    def __init__(
        self,
        keyfrm_1: Keyframe,
        keyfrm_2: Keyframe,
        matched_lms_in_keyfrm_2: Sequence[Landmark | None],
        fix_scale: bool = False,
        min_num_inliers: int = 20,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        """Collect the usable correspondences.

        Args:
            keyfrm_1: First keyframe
            keyfrm_2: Second keyframe
            matched_lms_in_keyfrm_2: For each keypoint index of keyframe 1,
                the landmark of keyframe 2 believed to match it (or None)
            fix_scale: Estimate a rigid transform (scale = 1)
            min_num_inliers: Inliers required for a valid solution
            rng: Random generator or seed for sampling

        Raises:
            ValueError: If the match list and the landmarks of keyframe 1
                differ in length
        """
        self._keyfrm_1 = keyfrm_1
        self._keyfrm_2 = keyfrm_2
        self._fix_scale = fix_scale
        self._min_num_inliers = min_num_inliers
        self._rng = np.random.default_rng(rng)

        rot_1w = keyfrm_1.get_rotation()
        trans_1w = keyfrm_1.get_translation()
        rot_2w = keyfrm_2.get_rotation()
        trans_2w = keyfrm_2.get_translation()

        pts_1: list[np.ndarray] = []
        pts_2: list[np.ndarray] = []
        chi_sq_x_sigma_sq_1: list[float] = []
        chi_sq_x_sigma_sq_2: list[float] = []
        matched_indices_1: list[int] = []
        matched_indices_2: list[int] = []

        keyfrm_1_lms = keyfrm_1.get_landmarks()
        pairs = zip(keyfrm_1_lms, matched_lms_in_keyfrm_2, strict=True)
        for idx1, (lm_1, lm_2) in enumerate(pairs):
            if lm_1 is None or lm_2 is None:
                continue
            if lm_1.will_be_erased() or lm_2.will_be_erased():
                continue

            idx2 = lm_2.get_index_in_keyframe(keyfrm_2)
            if idx2 < 0:
                continue

            octave_1 = keyfrm_1.undist_keypts[idx1].octave
            octave_2 = keyfrm_2.undist_keypts[idx2].octave
            chi_sq_x_sigma_sq_1.append(CHI_SQ_2D * keyfrm_1.level_sigma_sq[octave_1])
            chi_sq_x_sigma_sq_2.append(CHI_SQ_2D * keyfrm_2.level_sigma_sq[octave_2])

            matched_indices_1.append(idx1)
            matched_indices_2.append(idx2)

            pts_1.append(rot_1w @ lm_1.get_pos_in_world() + trans_1w)
            pts_2.append(rot_2w @ lm_2.get_pos_in_world() + trans_2w)

        self._pts_1 = np.array(pts_1, dtype=np.float64).reshape(-1, 3)
        self._pts_2 = np.array(pts_2, dtype=np.float64).reshape(-1, 3)
        self._chi_sq_x_sigma_sq_1 = np.array(chi_sq_x_sigma_sq_1, dtype=np.float64)
        self._chi_sq_x_sigma_sq_2 = np.array(chi_sq_x_sigma_sq_2, dtype=np.float64)
        self._matched_indices_1 = np.array(matched_indices_1, dtype=np.int64)
        self._matched_indices_2 = np.array(matched_indices_2, dtype=np.int64)

        # Each point seen through its own camera, the reference for inlier checks
        self._reprojected_1, _ = keyfrm_1.camera.reproject_points_to_image(
            np.eye(3), np.zeros(3), self._pts_1
        )
        self._reprojected_2, _ = keyfrm_2.camera.reproject_points_to_image(
            np.eye(3), np.zeros(3), self._pts_2
        )

        self._result = Sim3Result(is_valid=False, num_common_pts=self.num_common_pts)

    @classmethod
    def from_config(
        cls,
        keyfrm_1: Keyframe,
        keyfrm_2: Keyframe,
        matched_lms_in_keyfrm_2: Sequence[Landmark | None],
        config: Sim3Config,
        rng: np.random.Generator | int | None = None,
    ) -> Sim3Solver:
        return cls(
            keyfrm_1,
            keyfrm_2,
            matched_lms_in_keyfrm_2,
            fix_scale=config.fix_scale,
            min_num_inliers=config.min_num_inliers,
            rng=rng,
        )

    @property
    def num_common_pts(self) -> int:
        """Number of usable correspondences."""
        return len(self._pts_1)

    @property
    def matched_indices_1(self) -> np.ndarray:
        """Keypoint index in keyframe 1 of each correspondence."""
        return self._matched_indices_1.copy()

    @property
    def matched_indices_2(self) -> np.ndarray:
        """Keypoint index in keyframe 2 of each correspondence."""
        return self._matched_indices_2.copy()

    def compute_Sim3(self, pts_1: np.ndarray, pts_2: np.ndarray) -> tuple[Sim3, Sim3]:
        """Closed-form Sim3 honoring this solver's fix-scale setting."""
        return compute_sim3(pts_1, pts_2, fix_scale=self._fix_scale)

    def find_via_ransac(self, max_num_iter: int) -> Sim3Result:
        """Estimate the Sim3 with a fixed number of RANSAC iterations.

        Returns an invalid, zeroed result immediately when fewer than 3
        correspondences (or fewer than the required inliers) exist.

        Args:
            max_num_iter: Number of minimal samples to evaluate

        Returns:
            The best transform found and its inliers
        """
        num_common_pts = self.num_common_pts
        self._result = Sim3Result(is_valid=False, num_common_pts=num_common_pts)

        if num_common_pts < 3 or num_common_pts < self._min_num_inliers:
            logger.debug(
                "Sim3 between keyframes %d and %d skipped: %d correspondences",
                self._keyfrm_1.id,
                self._keyfrm_2.id,
                num_common_pts,
            )
            return self._result

        max_num_inliers = 0
        best: tuple[Sim3, Sim3, np.ndarray] | None = None

        for _ in range(max_num_iter):
            random_indices = create_random_array(3, 0, num_common_pts - 1, self._rng)

            sim3_21, sim3_12 = self.compute_Sim3(
                self._pts_1[random_indices], self._pts_2[random_indices]
            )
            if not (np.isfinite(sim3_21.scale) and np.isfinite(sim3_12.scale)):
                # degenerate sample
                continue

            num_inliers, inliers = self.count_inliers(sim3_21, sim3_12)

            if max_num_inliers < num_inliers:
                max_num_inliers = num_inliers
                best = (sim3_21, sim3_12, inliers)

        if best is None or max_num_inliers < self._min_num_inliers:
            logger.debug(
                "Sim3 between keyframes %d and %d rejected: %d/%d inliers",
                self._keyfrm_1.id,
                self._keyfrm_2.id,
                max_num_inliers,
                num_common_pts,
            )
            return self._result

        sim3_21, sim3_12, inliers = best
        self._result = Sim3Result(
            is_valid=True,
            sim3_21=sim3_21,
            sim3_12=sim3_12,
            num_inliers=max_num_inliers,
            num_common_pts=num_common_pts,
            inliers=inliers,
        )
        logger.debug(
            "Sim3 between keyframes %d and %d: %d/%d inliers, scale %.4f",
            self._keyfrm_1.id,
            self._keyfrm_2.id,
            max_num_inliers,
            num_common_pts,
            sim3_21.scale,
        )
        return self._result

    def count_inliers(self, sim3_21: Sim3, sim3_12: Sim3) -> tuple[int, np.ndarray]:
        """Count correspondences consistent with a candidate transform.

        Frame-1 points are reprojected into image 2 through ``sim3_21``
        and frame-2 points into image 1 through ``sim3_12``. A
        correspondence is an inlier only if both squared reprojection
        errors are below that keypoint's chi-squared gate.

        Returns:
            Tuple of (number of inliers, boolean inlier mask)
        """
        reprojected_1_in_cam_2, valid_in_2 = (
            self._keyfrm_2.camera.reproject_points_to_image(
                sim3_21.scaled_rotation, sim3_21.translation, self._pts_1
            )
        )
        reprojected_2_in_cam_1, valid_in_1 = (
            self._keyfrm_1.camera.reproject_points_to_image(
                sim3_12.scaled_rotation, sim3_12.translation, self._pts_2
            )
        )

        error_in_2 = np.sum((reprojected_1_in_cam_2 - self._reprojected_2) ** 2, axis=1)
        error_in_1 = np.sum((reprojected_2_in_cam_1 - self._reprojected_1) ** 2, axis=1)

        inliers = (
            valid_in_2
            & valid_in_1
            & (error_in_2 < self._chi_sq_x_sigma_sq_2)
            & (error_in_1 < self._chi_sq_x_sigma_sq_1)
        )
        return int(np.count_nonzero(inliers)), inliers

    @property
    def solution_is_valid(self) -> bool:
        return self._result.is_valid

    @property
    def result(self) -> Sim3Result:
        """Result of the last ``find_via_ransac`` call."""
        return self._result

    def get_best_sim3_21(self) -> Sim3:
        """Best transform taking frame-1 points into frame 2 (zero if invalid)."""
        return self._result.sim3_21

    def get_best_sim3_12(self) -> Sim3:
        """Best transform taking frame-2 points into frame 1 (zero if invalid)."""
        return self._result.sim3_12
