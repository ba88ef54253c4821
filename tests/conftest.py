"""
Shared synthetic scene for the reconstruction tests
"""

import pytest
import numpy as np
from pathlib import Path
import sys

from scipy.spatial.transform import Rotation

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfmrecon.core.camera_intrinsics_prior import CameraIntrinsicsPrior
from sfmrecon.core.twoview_info import twoview_info_from_pose
from sfmrecon.core.types import ImagePairMatch


class SyntheticScene:
    """Cameras on a line looking at a box of points, noise-free pixels"""

    focal_length = 500.0
    principal_point = (320.0, 240.0)
    image_size = (640, 480)

    def __init__(self, num_cameras=5, num_points=200, baseline=0.6, seed=0):
        rng = np.random.default_rng(seed)
        self.points = np.column_stack([
            rng.uniform(-2.0, 2.0, num_points),
            rng.uniform(-1.5, 1.5, num_points),
            rng.uniform(5.0, 7.0, num_points),
        ])

        self.rotations = []
        self.translations = []
        for i in range(num_cameras):
            center = np.array([baseline * (i - (num_cameras - 1) / 2.0), 0.0, 0.0])
            rotation = Rotation.from_rotvec([0.0, 0.02 * (i - (num_cameras - 1) / 2.0), 0.0]).as_matrix()
            self.rotations.append(rotation)
            self.translations.append(-rotation @ center)

        self.names = [f"img_{i:03d}.jpg" for i in range(num_cameras)]

    @property
    def num_cameras(self):
        return len(self.names)

    def prior(self):
        return CameraIntrinsicsPrior.calibrated(
            self.focal_length, list(self.principal_point), list(self.image_size)
        )

    def pixels(self, i):
        camera_points = self.points @ self.rotations[i].T + self.translations[i]
        return self.focal_length * camera_points[:, :2] / camera_points[:, 2:3] + np.array(self.principal_point)

    def relative_pose(self, i, j):
        rotation = self.rotations[j] @ self.rotations[i].T
        translation = self.translations[j] - rotation @ self.translations[i]
        return rotation, translation

    def pair_match(self, i, j, point_indices=None):
        """Verified match between camera i and j with unit-baseline geometry"""
        rotation, translation = self.relative_pose(i, j)
        indices = np.arange(len(self.points)) if point_indices is None else np.asarray(point_indices)
        info = twoview_info_from_pose(
            rotation,
            translation / np.linalg.norm(translation),
            focal_length_1=self.focal_length,
            focal_length_2=self.focal_length,
            num_verified_matches=len(indices),
        )
        return ImagePairMatch.from_points(
            self.names[i], self.names[j],
            self.pixels(i)[indices], self.pixels(j)[indices],
            twoview_info=info,
        )


@pytest.fixture
def scene():
    return SyntheticScene()
