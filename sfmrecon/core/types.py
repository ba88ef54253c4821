"""
Basic identifiers and correspondence records shared across the reconstruction core
"""

from dataclasses import dataclass, field
from typing import List, Tuple, Optional

import numpy as np

from .twoview_info import TwoViewInfo

ViewId = int
TrackId = int
CameraIntrinsicsGroupId = int

# Pixel observation (x, y). Kept as a tuple so it can be used as a dict key.
Feature = Tuple[float, float]

INVALID_VIEW_ID: ViewId = -1
INVALID_TRACK_ID: TrackId = -1
INVALID_CAMERA_INTRINSICS_GROUP_ID: CameraIntrinsicsGroupId = -1


def make_feature(x, y=None) -> Feature:
    """Build a Feature from two scalars or from any length-2 sequence"""
    if y is None:
        x, y = x
    return (float(x), float(y))


@dataclass
class FeatureCorrespondence:
    """2D-2D correspondence between two images"""

    feature1: Feature
    feature2: Feature

    def __post_init__(self):
        self.feature1 = make_feature(self.feature1)
        self.feature2 = make_feature(self.feature2)


@dataclass
class FeatureCorrespondence2D3D:
    """2D observation (normalized or pixel coordinates) of a known 3D point"""

    feature: np.ndarray
    world_point: np.ndarray

    def __post_init__(self):
        self.feature = np.asarray(self.feature, dtype=np.float64).reshape(2)
        self.world_point = np.asarray(self.world_point, dtype=np.float64).reshape(3)


@dataclass
class ImagePairMatch:
    """Verified matches between two images together with their two-view geometry"""

    image1: str
    image2: str
    twoview_info: TwoViewInfo = field(default_factory=TwoViewInfo)
    correspondences: List[FeatureCorrespondence] = field(default_factory=list)

    def num_correspondences(self) -> int:
        return len(self.correspondences)

    def points(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return the correspondences as two (N, 2) arrays"""
        if not self.correspondences:
            return np.zeros((0, 2)), np.zeros((0, 2))
        points1 = np.array([c.feature1 for c in self.correspondences], dtype=np.float64)
        points2 = np.array([c.feature2 for c in self.correspondences], dtype=np.float64)
        return points1, points2

    @classmethod
    def from_points(cls, image1: str, image2: str,
                    points1: np.ndarray, points2: np.ndarray,
                    twoview_info: Optional[TwoViewInfo] = None) -> "ImagePairMatch":
        correspondences = [
            FeatureCorrespondence(tuple(p1), tuple(p2))
            for p1, p2 in zip(np.asarray(points1), np.asarray(points2))
        ]
        return cls(
            image1=image1,
            image2=image2,
            twoview_info=twoview_info if twoview_info is not None else TwoViewInfo(),
            correspondences=correspondences,
        )
