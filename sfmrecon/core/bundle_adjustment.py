"""
Bundle adjustment with scipy.optimize.least_squares

Refines camera poses (angle-axis rotation + translation) and 3D points of
the estimated part of a reconstruction. Intrinsics are held fixed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix
from scipy.spatial.transform import Rotation

from .reconstruction import Reconstruction
from .types import TrackId, ViewId

logger = logging.getLogger(__name__)


@dataclass
class BundleAdjustmentOptions:
    """Configuration for the bundle adjuster"""

    # Loss function: "linear", "soft_l1", "huber", "cauchy", "arctan"
    loss: str = "soft_l1"

    # Residual scale (pixels) at which the robust loss kicks in
    robust_loss_width: float = 2.0

    max_iterations: int = 100
    ftol: float = 1e-6
    xtol: float = 1e-6

    # Views whose poses are kept fixed (removes the gauge freedom)
    constant_view_ids: Set[ViewId] = field(default_factory=set)


@dataclass
class BundleAdjustmentSummary:
    success: bool = False
    initial_cost: float = 0.0
    final_cost: float = 0.0
    num_residuals: int = 0
    setup_time: float = 0.0
    solve_time: float = 0.0


def _project(rotvecs: np.ndarray, translations: np.ndarray, points: np.ndarray,
             focal_lengths: np.ndarray, principal_points: np.ndarray) -> np.ndarray:
    camera_points = Rotation.from_rotvec(rotvecs).apply(points) + translations
    depths = camera_points[:, 2:3]
    depths = np.where(np.abs(depths) < 1e-12, 1e-12, depths)
    return focal_lengths[:, None] * camera_points[:, :2] / depths + principal_points


def bundle_adjust_views_and_tracks(reconstruction: Reconstruction,
                                   view_ids: Iterable[ViewId],
                                   track_ids: Iterable[TrackId],
                                   options: BundleAdjustmentOptions) -> BundleAdjustmentSummary:
    """
    Jointly refine the given views and tracks in place

    Only observations between the given views and tracks contribute.
    """
    summary = BundleAdjustmentSummary()
    start = time.time()

    view_ids = [v for v in sorted(set(view_ids)) if reconstruction.view(v) is not None]
    track_ids = [t for t in sorted(set(track_ids)) if reconstruction.track(t) is not None]
    view_set = set(view_ids)

    variable_views = [v for v in view_ids if v not in options.constant_view_ids]
    view_index: Dict[ViewId, int] = {v: i for i, v in enumerate(view_ids)}
    variable_index: Dict[ViewId, int] = {v: i for i, v in enumerate(variable_views)}
    track_index: Dict[TrackId, int] = {t: i for i, t in enumerate(track_ids)}

    camera_indices: List[int] = []
    point_indices: List[int] = []
    observations: List[tuple] = []
    for track_id in track_ids:
        for view_id in reconstruction.track(track_id).view_ids:
            if view_id not in view_set:
                continue
            feature = reconstruction.view(view_id).get_feature(track_id)
            camera_indices.append(view_index[view_id])
            point_indices.append(track_index[track_id])
            observations.append(feature)

    n_observations = len(observations)
    if n_observations < 10:
        logger.warning(f"Not enough observations for bundle adjustment: {n_observations}")
        return summary

    camera_indices = np.array(camera_indices)
    point_indices = np.array(point_indices)
    observations = np.array(observations, dtype=np.float64)

    cameras = [reconstruction.view(v).camera for v in view_ids]
    rotvecs = np.array([c.orientation for c in cameras])
    translations = np.array([c.translation() for c in cameras])
    focal_lengths = np.array([c.focal_length for c in cameras])[camera_indices]
    principal_points = np.array([c.principal_point for c in cameras])[camera_indices]
    points = np.array([reconstruction.track(t).euclidean_point() for t in track_ids])

    is_variable = np.array([v in variable_index for v in view_ids])
    n_variable = len(variable_views)
    n_points = len(track_ids)

    def unpack(x):
        cam_params = np.hstack([rotvecs, translations])
        if n_variable:
            cam_params[is_variable] = x[:n_variable * 6].reshape(n_variable, 6)
        pts = x[n_variable * 6:].reshape(n_points, 3)
        return cam_params, pts

    def residuals(x):
        cam_params, pts = unpack(x)
        projected = _project(
            cam_params[camera_indices, :3], cam_params[camera_indices, 3:],
            pts[point_indices], focal_lengths, principal_points,
        )
        return (projected - observations).ravel()

    sparsity = lil_matrix((n_observations * 2, n_variable * 6 + n_points * 3), dtype=int)
    obs = np.arange(n_observations)
    variable_obs = is_variable[camera_indices]
    camera_columns = np.array([variable_index.get(view_ids[c], 0) for c in camera_indices]) * 6
    for k in range(6):
        sparsity[2 * obs[variable_obs], camera_columns[variable_obs] + k] = 1
        sparsity[2 * obs[variable_obs] + 1, camera_columns[variable_obs] + k] = 1
    for k in range(3):
        sparsity[2 * obs, n_variable * 6 + point_indices * 3 + k] = 1
        sparsity[2 * obs + 1, n_variable * 6 + point_indices * 3 + k] = 1

    x0 = np.concatenate([
        np.hstack([rotvecs, translations])[is_variable].ravel(),
        points.ravel(),
    ])
    summary.setup_time = time.time() - start
    summary.num_residuals = n_observations * 2

    solve_start = time.time()
    result = least_squares(
        residuals,
        x0,
        jac_sparsity=sparsity,
        loss=options.loss,
        f_scale=options.robust_loss_width,
        x_scale="jac",
        method="trf",
        max_nfev=options.max_iterations,
        ftol=options.ftol,
        xtol=options.xtol,
    )
    summary.solve_time = time.time() - solve_start
    summary.initial_cost = float(0.5 * np.sum(residuals(x0) ** 2))
    summary.final_cost = float(0.5 * np.sum(residuals(result.x) ** 2))
    # Running out of evaluations still leaves a usable (improved) solution
    summary.success = result.status >= 0

    cam_params, pts = unpack(result.x)
    for view_id, params in zip(view_ids, cam_params):
        if view_id not in variable_index:
            continue
        camera = reconstruction.view(view_id).camera
        camera.set_pose(Rotation.from_rotvec(params[:3]).as_matrix(), params[3:])
    for track_id, point in zip(track_ids, pts):
        reconstruction.track(track_id).set_point(point)

    logger.debug(
        f"Bundle adjustment: {len(view_ids)} views, {n_points} points, "
        f"cost {summary.initial_cost:.4f} -> {summary.final_cost:.4f} ({result.message})"
    )
    return summary
