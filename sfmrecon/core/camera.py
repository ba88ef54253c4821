"""
Pinhole camera with pose

The orientation is an angle-axis rotation from world to camera coordinates
and the position is the camera centre in world coordinates, so a world point
X maps to camera coordinates R (X - c).
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .camera_intrinsics_prior import CameraIntrinsicsPrior


@dataclass
class Camera:
    """Pinhole camera model (no distortion)"""

    orientation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal_length: float = 1.0
    principal_point: np.ndarray = field(default_factory=lambda: np.zeros(2))
    image_width: int = 0
    image_height: int = 0

    def __post_init__(self):
        self.orientation = np.asarray(self.orientation, dtype=np.float64).reshape(3)
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.principal_point = np.asarray(self.principal_point, dtype=np.float64).reshape(2)

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_rotvec(self.orientation).as_matrix()

    def set_orientation_from_rotation_matrix(self, rotation: np.ndarray) -> None:
        self.orientation = Rotation.from_matrix(rotation).as_rotvec()

    def translation(self) -> np.ndarray:
        return -self.rotation_matrix() @ self.position

    def set_pose(self, rotation: np.ndarray, translation: np.ndarray) -> None:
        """Set the pose from x_cam = R X + t"""
        rotation = np.asarray(rotation, dtype=np.float64)
        self.set_orientation_from_rotation_matrix(rotation)
        self.position = -rotation.T @ np.asarray(translation, dtype=np.float64).reshape(3)

    def calibration_matrix(self) -> np.ndarray:
        return np.array([
            [self.focal_length, 0.0, self.principal_point[0]],
            [0.0, self.focal_length, self.principal_point[1]],
            [0.0, 0.0, 1.0],
        ])

    def projection_matrix(self) -> np.ndarray:
        """3x4 matrix K [R | t]"""
        pose = np.hstack([self.rotation_matrix(), self.translation().reshape(3, 1)])
        return self.calibration_matrix() @ pose

    def project(self, point: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Project a 3D (or homogeneous 4D) point

        Returns:
            (pixel, depth); depth <= 0 means the point is behind the camera
        """
        point = np.asarray(point, dtype=np.float64)
        if point.shape[0] == 4:
            point = point[:3] / point[3]
        camera_point = self.rotation_matrix() @ (point - self.position)
        depth = camera_point[2]
        if abs(depth) < 1e-12:
            return np.array([np.inf, np.inf]), depth
        pixel = self.focal_length * camera_point[:2] / depth + self.principal_point
        return pixel, depth

    def pixel_to_normalized(self, pixel) -> np.ndarray:
        pixel = np.asarray(pixel, dtype=np.float64)
        return (pixel - self.principal_point) / self.focal_length

    def set_from_prior(self, prior: CameraIntrinsicsPrior,
                       fallback_focal_length: Optional[float] = None) -> bool:
        """
        Initialize the intrinsics from a prior

        Returns:
            False if no focal length could be determined
        """
        if prior.image_width.is_set:
            self.image_width = int(prior.image_width.get())
        if prior.image_height.is_set:
            self.image_height = int(prior.image_height.get())

        if prior.principal_point.is_set:
            self.principal_point = np.asarray(prior.principal_point.value[:2], dtype=np.float64)
        elif self.image_width > 0 and self.image_height > 0:
            self.principal_point = np.array([self.image_width / 2.0, self.image_height / 2.0])

        if prior.focal_length.is_set:
            self.focal_length = float(prior.focal_length.get())
            return True
        if fallback_focal_length is not None and self.image_width > 0 and self.image_height > 0:
            self.focal_length = fallback_focal_length * max(self.image_width, self.image_height)
            return True
        return False
