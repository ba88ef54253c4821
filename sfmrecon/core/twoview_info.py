"""
Relative geometry between two views

Camera 1 sits at the origin with identity rotation. ``rotation_2`` is the
angle-axis rotation taking camera 1 coordinates to camera 2 coordinates and
``position_2`` is the centre of camera 2 expressed in the camera 1 frame.
"""

from dataclasses import dataclass, field
from typing import Dict, Any

import numpy as np
from scipy.spatial.transform import Rotation


@dataclass
class TwoViewInfo:
    """Two-view geometry summary stored on view graph edges"""

    focal_length_1: float = 0.0
    focal_length_2: float = 0.0
    position_2: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation_2: np.ndarray = field(default_factory=lambda: np.zeros(3))

    # Number of correspondences supporting the geometry after verification
    num_verified_matches: int = 0
    num_homography_inliers: int = 0
    visibility_score: int = 0

    def __post_init__(self):
        self.position_2 = np.asarray(self.position_2, dtype=np.float64).reshape(3)
        self.rotation_2 = np.asarray(self.rotation_2, dtype=np.float64).reshape(3)

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_rotvec(self.rotation_2).as_matrix()

    def translation(self) -> np.ndarray:
        """Translation t such that x2 = R x1 + t"""
        return -self.rotation_matrix() @ self.position_2

    def is_close(self, other: "TwoViewInfo", tol: float = 1e-9) -> bool:
        return (
            abs(self.focal_length_1 - other.focal_length_1) <= tol
            and abs(self.focal_length_2 - other.focal_length_2) <= tol
            and np.allclose(self.position_2, other.position_2, atol=tol)
            and np.allclose(self.rotation_2, other.rotation_2, atol=tol)
            and self.num_verified_matches == other.num_verified_matches
            and self.num_homography_inliers == other.num_homography_inliers
            and self.visibility_score == other.visibility_score
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "focal_length_1": float(self.focal_length_1),
            "focal_length_2": float(self.focal_length_2),
            "position_2": self.position_2.tolist(),
            "rotation_2": self.rotation_2.tolist(),
            "num_verified_matches": int(self.num_verified_matches),
            "num_homography_inliers": int(self.num_homography_inliers),
            "visibility_score": int(self.visibility_score),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TwoViewInfo":
        return cls(**data)


def swap_cameras(info: TwoViewInfo) -> TwoViewInfo:
    """
    Return the same relation seen from camera 2

    The focal lengths are exchanged, the rotation is inverted and the position
    of the old camera 1 is expressed in the old camera 2 frame.
    """
    rotation = info.rotation_matrix()
    return TwoViewInfo(
        focal_length_1=info.focal_length_2,
        focal_length_2=info.focal_length_1,
        position_2=-rotation @ info.position_2,
        rotation_2=-info.rotation_2,
        num_verified_matches=info.num_verified_matches,
        num_homography_inliers=info.num_homography_inliers,
        visibility_score=info.visibility_score,
    )


def twoview_info_from_pose(rotation: np.ndarray, translation: np.ndarray,
                           **kwargs) -> TwoViewInfo:
    """Build a TwoViewInfo from a relative pose x2 = R x1 + t"""
    rotation = np.asarray(rotation, dtype=np.float64)
    translation = np.asarray(translation, dtype=np.float64).reshape(3)
    return TwoViewInfo(
        position_2=-rotation.T @ translation,
        rotation_2=Rotation.from_matrix(rotation).as_rotvec(),
        **kwargs,
    )
