"""
Unit tests for two-view geometric verification
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfmrecon.core.camera_intrinsics_prior import CameraIntrinsicsPrior
from sfmrecon.core.geometric_verification import (
    GeometricVerification,
    GeometricVerificationOptions,
)


def add_outliers(points, ratio, seed):
    rng = np.random.default_rng(seed)
    points = points.copy()
    num_outliers = int(len(points) * ratio)
    points[:num_outliers] = rng.uniform([0, 0], [640, 480], (num_outliers, 2))
    return points, num_outliers


class TestGeometricVerificationOptions:
    """Test option validation"""

    def test_invalid_threads(self):
        """Test that zero worker threads are rejected"""
        with pytest.raises(ValueError):
            GeometricVerificationOptions(num_threads=0)

    def test_dict_roundtrip(self):
        """Test from_dict / to_dict"""
        options = GeometricVerificationOptions(threshold=1.5, seed=3)
        restored = GeometricVerificationOptions.from_dict(options.to_dict())
        assert restored == options


class TestGeometricVerification:
    """Test relative pose verification on a synthetic pair"""

    def test_verify_pair(self, scene):
        """Test that the relative pose and inliers are recovered"""
        verification = GeometricVerification(GeometricVerificationOptions(seed=0))
        points2, num_outliers = add_outliers(scene.pixels(1), 0.2, seed=1)

        match = verification.verify_pair(
            scene.names[0], scene.names[1], scene.pixels(0), points2, scene.prior(), scene.prior()
        )

        assert match is not None
        info = match.twoview_info
        assert info.num_verified_matches == match.num_correspondences()
        assert match.num_correspondences() >= len(scene.points) - num_outliers

        rotation, translation = scene.relative_pose(0, 1)
        np.testing.assert_allclose(info.rotation_matrix(), rotation, atol=1e-3)
        expected_position = -rotation.T @ translation
        expected_position /= np.linalg.norm(expected_position)
        np.testing.assert_allclose(info.position_2, expected_position, atol=1e-3)
        assert info.focal_length_1 == scene.focal_length

    def test_missing_focal_length(self, scene):
        """Test that uncalibrated pairs are skipped"""
        verification = GeometricVerification()
        match = verification.verify_pair(
            scene.names[0], scene.names[1], scene.pixels(0), scene.pixels(1),
            scene.prior(), CameraIntrinsicsPrior(),
        )
        assert match is None

    def test_too_few_matches(self, scene):
        """Test that pairs below the inlier minimum are rejected"""
        verification = GeometricVerification(GeometricVerificationOptions(min_num_inlier_matches=30))
        match = verification.verify_pair(
            scene.names[0], scene.names[1], scene.pixels(0)[:20], scene.pixels(1)[:20],
            scene.prior(), scene.prior(),
        )
        assert match is None

    def test_mismatched_point_counts(self, scene):
        """Test that inconsistent inputs raise"""
        verification = GeometricVerification()
        with pytest.raises(ValueError):
            verification.verify_pair(
                scene.names[0], scene.names[1], scene.pixels(0), scene.pixels(1)[:10],
                scene.prior(), scene.prior(),
            )

    def test_verify_pairs_independent_of_threads(self, scene):
        """Test that parallel verification is reproducible for a fixed seed"""
        putative = {}
        for i, j in [(0, 1), (1, 2), (0, 2)]:
            points_j, _ = add_outliers(scene.pixels(j), 0.3, seed=i + j)
            putative[(scene.names[i], scene.names[j])] = (scene.pixels(i), points_j)
        priors = {name: scene.prior() for name in scene.names}

        serial = GeometricVerification(GeometricVerificationOptions(num_threads=1, seed=11))
        parallel = GeometricVerification(GeometricVerificationOptions(num_threads=3, seed=11))
        result_serial = serial.verify_pairs(putative, priors)
        result_parallel = parallel.verify_pairs(putative, priors)

        assert set(result_serial.keys()) == set(putative.keys())
        for pair, match in result_serial.items():
            other = result_parallel[pair]
            assert match.num_correspondences() == other.num_correspondences()
            assert match.twoview_info.is_close(other.twoview_info)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
