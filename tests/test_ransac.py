"""
Unit tests for the sample consensus framework and the absolute pose estimator
"""

import pytest
import cv2
import numpy as np
from pathlib import Path
import sys

from scipy.spatial.transform import Rotation

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfmrecon.core.estimators import (
    RigidTransformation,
    RigidTransformation2D3DEstimator,
    estimate_rigid_transformation_2d_3d,
)
from sfmrecon.core.ransac import (
    Estimator,
    RansacParameters,
    RansacType,
    SampleConsensusEstimator,
    create_estimator,
)
from sfmrecon.core.types import FeatureCorrespondence2D3D


class LineEstimator(Estimator):
    """2D line a*x + b*y + c = 0 through two points"""

    def sample_size(self):
        return 2

    def estimate_model(self, data):
        p1, p2 = np.asarray(data[0]), np.asarray(data[1])
        direction = p2 - p1
        norm = np.linalg.norm(direction)
        if norm < 1e-12:
            return []
        normal = np.array([-direction[1], direction[0]]) / norm
        return [np.array([normal[0], normal[1], -normal @ p1])]

    def error(self, datum, model):
        return float((model[0] * datum[0] + model[1] * datum[1] + model[2]) ** 2)


class FlakyLineEstimator(LineEstimator):
    """Line solver whose OpenCV backend fails on every other sample"""

    def __init__(self):
        self.calls = 0

    def estimate_model(self, data):
        self.calls += 1
        if self.calls % 2 == 0:
            raise cv2.error("solver failed")
        return super().estimate_model(data)


def make_line_data(num_inliers=80, num_outliers=20, seed=0):
    rng = np.random.default_rng(seed)
    x = rng.uniform(-10, 10, num_inliers)
    inliers = np.column_stack([x, 2.0 * x + 1.0])
    outliers = rng.uniform(-30, 30, (num_outliers, 2))
    data = np.vstack([inliers, outliers])
    return [tuple(p) for p in data]


def make_pose_data(num_inliers=80, num_outliers=20, seed=0):
    """Normalized 2D-3D correspondences of a camera looking down +z"""
    rng = np.random.default_rng(seed)
    rotation = Rotation.from_rotvec([0.1, -0.2, 0.05]).as_matrix()
    translation = np.array([0.1, 0.2, 5.0])

    world_points = rng.uniform(-1.0, 1.0, (num_inliers + num_outliers, 3))
    camera_points = world_points @ rotation.T + translation
    features = camera_points[:, :2] / camera_points[:, 2:3]
    features[num_inliers:] = rng.uniform(-0.3, 0.3, (num_outliers, 2))

    correspondences = [
        FeatureCorrespondence2D3D(feature=f, world_point=X)
        for f, X in zip(features, world_points)
    ]
    return correspondences, rotation, translation


class TestRansacParameters:
    """Test parameter validation"""

    def test_invalid_threshold(self):
        """Test that a non-positive threshold is rejected"""
        with pytest.raises(ValueError):
            RansacParameters(error_thresh=0.0)

    def test_invalid_failure_probability(self):
        """Test that the failure probability must lie in (0, 1)"""
        with pytest.raises(ValueError):
            RansacParameters(failure_probability=1.0)

    def test_min_exceeds_max_iterations(self):
        """Test that min_iterations > max_iterations is rejected"""
        with pytest.raises(ValueError):
            RansacParameters(min_iterations=10, max_iterations=5)

    def test_rng_created_from_seed(self):
        """Test that the generator is derived from the seed"""
        a = RansacParameters(seed=3).rng.integers(0, 1000, 5)
        b = RansacParameters(seed=3).rng.integers(0, 1000, 5)
        np.testing.assert_array_equal(a, b)


class TestSampleConsensusEstimator:
    """Test the hypothesize-and-verify loop"""

    def test_compute_max_iterations(self):
        """Test the adaptive iteration bound"""
        params = RansacParameters(failure_probability=0.01, min_iterations=1, max_iterations=1000)
        ransac = SampleConsensusEstimator(params, LineEstimator())

        # log(0.01) / log(1 - 0.5^2) = 16.008...
        assert ransac.compute_max_iterations(0.5) == 17
        assert ransac.compute_max_iterations(1.0) == 1
        assert ransac.compute_max_iterations(0.0) == 1000

    def test_line_with_outliers(self):
        """Test that the inliers of a line are recovered"""
        data = make_line_data()
        params = RansacParameters(error_thresh=0.1, seed=1)
        model, summary = SampleConsensusEstimator(params, LineEstimator()).estimate(data)

        assert summary.success
        assert model is not None
        assert set(range(80)).issubset(set(summary.inliers))
        assert summary.num_input_data_points == 100

    def test_mle_scoring(self):
        """Test truncated squared error scoring"""
        data = make_line_data(seed=2)
        params = RansacParameters(error_thresh=0.1, use_mle=True, seed=2)
        model, summary = SampleConsensusEstimator(params, LineEstimator()).estimate(data)

        assert summary.success
        assert len(summary.inliers) >= 80

    def test_least_median(self):
        """Test least median of squares on data with less than half outliers"""
        data = make_line_data(num_inliers=70, num_outliers=30, seed=3)
        params = RansacParameters(error_thresh=0.1, seed=3)
        ransac = create_estimator(RansacType.LMED, params, LineEstimator())
        model, summary = ransac.estimate(data)

        assert summary.success
        assert set(range(70)).issubset(set(summary.inliers))

    def test_insufficient_data(self):
        """Test that fewer points than the sample size fail without raising"""
        params = RansacParameters(seed=0)
        model, summary = SampleConsensusEstimator(params, LineEstimator()).estimate([(0.0, 0.0)])

        assert model is None
        assert not summary.success
        assert summary.inliers == []

    def test_degenerate_samples_advance_counter(self):
        """Test that only-degenerate data runs to max_iterations and fails"""
        data = [(1.0, 1.0)] * 10
        params = RansacParameters(min_iterations=5, max_iterations=50, seed=0)
        model, summary = SampleConsensusEstimator(params, LineEstimator()).estimate(data)

        assert model is None
        assert not summary.success
        assert summary.num_iterations == 50

    def test_solver_errors_advance_counter(self):
        """Test that OpenCV errors from the minimal solver skip the sample"""
        data = make_line_data(seed=6)
        params = RansacParameters(error_thresh=0.1, min_iterations=20, max_iterations=200, seed=6)
        estimator = FlakyLineEstimator()
        model, summary = SampleConsensusEstimator(params, estimator).estimate(data)

        assert summary.success
        assert model is not None
        assert estimator.calls == summary.num_iterations
        assert len(summary.inliers) >= 80

    def test_max_iterations_bound(self):
        """Test that the iteration count never exceeds max_iterations"""
        data = make_line_data(num_inliers=10, num_outliers=90, seed=4)
        params = RansacParameters(error_thresh=0.1, min_iterations=5, max_iterations=20, seed=4)
        _, summary = SampleConsensusEstimator(params, LineEstimator()).estimate(data)

        assert summary.num_iterations <= 20

    def test_min_inlier_ratio(self):
        """Test that models below the minimum inlier ratio are rejected"""
        data = make_line_data(num_inliers=30, num_outliers=70, seed=5)
        params = RansacParameters(error_thresh=0.1, min_inlier_ratio=0.5, seed=5)
        model, summary = SampleConsensusEstimator(params, LineEstimator()).estimate(data)

        assert model is None
        assert not summary.success


class TestRigidTransformation2D3D:
    """Test absolute pose estimation with P3P"""

    def test_pose_with_outliers(self):
        """Test that the pose is recovered with the requested confidence"""
        correspondences, rotation, translation = make_pose_data()
        params = RansacParameters(error_thresh=0.002, failure_probability=0.01, seed=42)
        pose, summary = estimate_rigid_transformation_2d_3d(params, RansacType.RANSAC, correspondences)

        assert summary.success
        assert summary.confidence >= 0.99
        assert set(range(80)).issubset(set(summary.inliers))
        np.testing.assert_allclose(pose.rotation, rotation, atol=1e-4)
        np.testing.assert_allclose(pose.translation, translation, atol=1e-3)

    def test_reproducibility(self):
        """Test that the same seed yields the same result"""
        correspondences, _, _ = make_pose_data(seed=1)

        results = []
        for _ in range(2):
            params = RansacParameters(error_thresh=0.002, seed=7)
            pose, summary = estimate_rigid_transformation_2d_3d(params, RansacType.RANSAC, correspondences)
            results.append((pose, summary))

        (pose_a, summary_a), (pose_b, summary_b) = results
        assert summary_a.inliers == summary_b.inliers
        assert summary_a.num_iterations == summary_b.num_iterations
        np.testing.assert_array_equal(pose_a.rotation, pose_b.rotation)

    def test_insufficient_correspondences(self):
        """Test that two correspondences are not enough"""
        correspondences, _, _ = make_pose_data(num_inliers=2, num_outliers=0)
        params = RansacParameters(error_thresh=0.002, seed=0)
        pose, summary = estimate_rigid_transformation_2d_3d(params, RansacType.RANSAC, correspondences)

        assert pose is None
        assert not summary.success
        assert summary.inliers == []

    def test_duplicate_points(self):
        """Test that identical correspondences never produce a model"""
        correspondence = FeatureCorrespondence2D3D(feature=[0.1, 0.1], world_point=[0.5, 0.5, 5.0])
        params = RansacParameters(error_thresh=0.002, min_iterations=5, max_iterations=30, seed=0)
        pose, summary = estimate_rigid_transformation_2d_3d(
            params, RansacType.RANSAC, [correspondence] * 10
        )

        assert pose is None
        assert not summary.success
        assert summary.num_iterations == 30

    def test_points_behind_camera(self):
        """Test that points behind the camera get an infinite error"""
        estimator = RigidTransformation2D3DEstimator()
        correspondences, rotation, translation = make_pose_data(num_inliers=5, num_outliers=0)
        flipped = RigidTransformation(rotation, -translation * 10.0)

        residuals = estimator.residuals(correspondences, flipped)
        assert np.all(np.isinf(residuals))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
