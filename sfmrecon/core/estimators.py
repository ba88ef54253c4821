"""
Geometric models for the sample consensus framework

- RigidTransformation2D3DEstimator: absolute pose of a calibrated camera from
  2D-3D correspondences (P3P minimal solver)
- EssentialMatrixEstimator: relative geometry of two calibrated views from
  2D-2D correspondences (normalized 8-point solver)

All features are expected in normalized image coordinates, i.e. with the
calibration already removed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .ransac import Estimator, RansacParameters, RansacSummary, RansacType, create_estimator
from .types import FeatureCorrespondence, FeatureCorrespondence2D3D

logger = logging.getLogger(__name__)


@dataclass
class RigidTransformation:
    """x_cam = rotation @ X + translation"""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))


class RigidTransformation2D3DEstimator(Estimator):
    """Perspective-three-point with squared reprojection error"""

    def sample_size(self) -> int:
        return 3

    def estimate_model(self, data: Sequence[FeatureCorrespondence2D3D]) -> List[RigidTransformation]:
        world_points = np.array([c.world_point for c in data], dtype=np.float64)
        features = np.array([c.feature for c in data], dtype=np.float64)

        # Duplicated points make P3P degenerate
        if np.linalg.matrix_rank(world_points - world_points.mean(axis=0), tol=1e-9) < 2:
            return []

        try:
            num_solutions, rvecs, tvecs = cv2.solveP3P(
                world_points, features, np.eye(3), None, flags=cv2.SOLVEPNP_P3P
            )
        except cv2.error as e:
            logger.debug(f"P3P failed: {e}")
            return []

        models = []
        for rvec, tvec in zip(rvecs[:num_solutions], tvecs[:num_solutions]):
            rotation, _ = cv2.Rodrigues(rvec)
            translation = np.asarray(tvec, dtype=np.float64).reshape(3)
            if np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation)):
                models.append(RigidTransformation(rotation, translation))
        return models

    def error(self, datum: FeatureCorrespondence2D3D, model: RigidTransformation) -> float:
        camera_point = model.rotation @ datum.world_point + model.translation
        if camera_point[2] <= 0:
            return np.inf
        return float(np.sum((camera_point[:2] / camera_point[2] - datum.feature) ** 2))

    def residuals(self, data: Sequence[FeatureCorrespondence2D3D],
                  model: RigidTransformation) -> np.ndarray:
        world_points = np.array([c.world_point for c in data], dtype=np.float64)
        features = np.array([c.feature for c in data], dtype=np.float64)
        camera_points = world_points @ model.rotation.T + model.translation
        depths = camera_points[:, 2]

        residuals = np.full(len(data), np.inf)
        in_front = depths > 0
        projected = camera_points[in_front, :2] / depths[in_front, None]
        residuals[in_front] = np.sum((projected - features[in_front]) ** 2, axis=1)
        return residuals


class EssentialMatrixEstimator(Estimator):
    """Normalized 8-point algorithm with squared Sampson error"""

    def sample_size(self) -> int:
        return 8

    @staticmethod
    def _as_arrays(data: Sequence[FeatureCorrespondence]) -> Tuple[np.ndarray, np.ndarray]:
        points1 = np.array([c.feature1 for c in data], dtype=np.float64)
        points2 = np.array([c.feature2 for c in data], dtype=np.float64)
        return points1, points2

    def estimate_model(self, data: Sequence[FeatureCorrespondence]) -> List[np.ndarray]:
        points1, points2 = self._as_arrays(data)
        x1, y1 = points1[:, 0], points1[:, 1]
        x2, y2 = points2[:, 0], points2[:, 1]
        A = np.column_stack([
            x2 * x1, x2 * y1, x2,
            y2 * x1, y2 * y1, y2,
            x1, y1, np.ones(len(points1)),
        ])

        _, singular_values, Vt = np.linalg.svd(A)
        # A rank-deficient system has no unique null vector
        if singular_values[-1] < 1e-10 * max(singular_values[0], 1e-300):
            return []

        E = Vt[-1].reshape(3, 3)
        U, _, Vt_e = np.linalg.svd(E)
        E = U @ np.diag([1.0, 1.0, 0.0]) @ Vt_e
        return [E]

    def error(self, datum: FeatureCorrespondence, model: np.ndarray) -> float:
        x1 = np.array([datum.feature1[0], datum.feature1[1], 1.0])
        x2 = np.array([datum.feature2[0], datum.feature2[1], 1.0])
        Ex1 = model @ x1
        Etx2 = model.T @ x2
        numerator = float(x2 @ Ex1) ** 2
        denominator = Ex1[0] ** 2 + Ex1[1] ** 2 + Etx2[0] ** 2 + Etx2[1] ** 2
        if denominator < 1e-300:
            return np.inf
        return numerator / denominator

    def residuals(self, data: Sequence[FeatureCorrespondence], model: np.ndarray) -> np.ndarray:
        points1, points2 = self._as_arrays(data)
        x1 = np.column_stack([points1, np.ones(len(points1))])
        x2 = np.column_stack([points2, np.ones(len(points2))])
        Ex1 = x1 @ model.T
        Etx2 = x2 @ model
        numerator = np.sum(x2 * Ex1, axis=1) ** 2
        denominator = Ex1[:, 0] ** 2 + Ex1[:, 1] ** 2 + Etx2[:, 0] ** 2 + Etx2[:, 1] ** 2
        with np.errstate(divide="ignore", invalid="ignore"):
            residuals = numerator / denominator
        residuals[~np.isfinite(residuals)] = np.inf
        return residuals


def estimate_rigid_transformation_2d_3d(
    params: RansacParameters,
    ransac_type: RansacType,
    correspondences: Sequence[FeatureCorrespondence2D3D],
) -> Tuple[Optional[RigidTransformation], RansacSummary]:
    """Robust absolute pose from normalized 2D-3D correspondences"""
    ransac = create_estimator(ransac_type, params, RigidTransformation2D3DEstimator())
    return ransac.estimate(correspondences)


def estimate_essential_matrix(
    params: RansacParameters,
    ransac_type: RansacType,
    correspondences: Sequence[FeatureCorrespondence],
) -> Tuple[Optional[np.ndarray], RansacSummary]:
    """Robust essential matrix from normalized 2D-2D correspondences"""
    ransac = create_estimator(ransac_type, params, EssentialMatrixEstimator())
    return ransac.estimate(correspondences)


def estimate_relative_pose(
    params: RansacParameters,
    ransac_type: RansacType,
    correspondences: Sequence[FeatureCorrespondence],
) -> Tuple[Optional[RigidTransformation], RansacSummary]:
    """
    Robust relative pose (x2 = R x1 + t, unit-norm t)

    The essential matrix is decomposed with a cheirality check on the inliers.
    """
    essential_matrix, summary = estimate_essential_matrix(params, ransac_type, correspondences)
    if essential_matrix is None:
        return None, summary

    inlier_data = [correspondences[i] for i in summary.inliers]
    points1 = np.array([c.feature1 for c in inlier_data], dtype=np.float64)
    points2 = np.array([c.feature2 for c in inlier_data], dtype=np.float64)
    try:
        num_in_front, R, t, _ = cv2.recoverPose(
            essential_matrix, points1, points2, focal=1.0, pp=(0.0, 0.0)
        )
    except cv2.error as e:
        logger.debug(f"Pose recovery failed: {e}")
        summary.success = False
        summary.inliers = []
        return None, summary

    if num_in_front == 0:
        summary.success = False
        summary.inliers = []
        return None, summary
    return RigidTransformation(np.asarray(R), np.asarray(t).reshape(3)), summary
