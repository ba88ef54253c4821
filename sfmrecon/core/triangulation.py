"""
Triangulation utilities
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .camera import Camera

logger = logging.getLogger(__name__)


def triangulate_dlt(projection_matrices: Sequence[np.ndarray],
                    pixels: Sequence[np.ndarray]) -> Optional[np.ndarray]:
    """
    Triangulate a point from two or more views using DLT

    Returns:
        Homogeneous 4-vector with last coordinate 1, or None when degenerate
    """
    if len(projection_matrices) < 2:
        return None

    rows = []
    for P, pixel in zip(projection_matrices, pixels):
        rows.append(pixel[0] * P[2] - P[0])
        rows.append(pixel[1] * P[2] - P[1])
    A = np.array(rows)

    try:
        _, _, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError:
        return None

    X = Vt[-1]
    if abs(X[3]) < 1e-12:
        return None
    return X / X[3]


def triangulation_angle_degrees(cameras: Sequence[Camera], point: np.ndarray) -> float:
    """Largest angle between the viewing rays of a point"""
    point = np.asarray(point, dtype=np.float64)
    if point.shape[0] == 4:
        point = point[:3] / point[3]

    rays: List[np.ndarray] = []
    for camera in cameras:
        ray = point - camera.position
        norm = np.linalg.norm(ray)
        if norm > 0:
            rays.append(ray / norm)

    max_angle = 0.0
    for i in range(len(rays)):
        for j in range(i + 1, len(rays)):
            cos_angle = np.clip(np.dot(rays[i], rays[j]), -1.0, 1.0)
            max_angle = max(max_angle, float(np.degrees(np.arccos(cos_angle))))
    return max_angle


def reprojection_error(camera: Camera, point: np.ndarray, pixel) -> float:
    """Pixel distance; infinite if the point is behind the camera"""
    projected, depth = camera.project(point)
    if depth <= 0:
        return np.inf
    return float(np.linalg.norm(projected - np.asarray(pixel, dtype=np.float64)))


def is_valid_triangulation(cameras: Sequence[Camera], pixels: Sequence,
                           point: np.ndarray,
                           max_reprojection_error: float,
                           min_triangulation_angle: float) -> bool:
    """Point is in front of all cameras, reprojects well and is not too ill-conditioned"""
    for camera, pixel in zip(cameras, pixels):
        if reprojection_error(camera, point, pixel) > max_reprojection_error:
            return False
    return triangulation_angle_degrees(cameras, point) >= min_triangulation_angle
