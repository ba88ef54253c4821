"""
Incremental reconstruction estimator

Grows a single model from the best-connected view pair: the pair is placed
from its two-view geometry, shared tracks are triangulated, further views
are localized with P3P RANSAC one at a time, and bundle adjustment refines
the model as it grows. Only the largest connected component of the view
graph is considered, so views in other components stay unestimated for a
later attempt.
"""

import logging
import time
from typing import List, Optional, Set, Tuple

import numpy as np
from tqdm import tqdm

from .bundle_adjustment import BundleAdjustmentOptions, bundle_adjust_views_and_tracks
from .estimators import estimate_rigid_transformation_2d_3d
from .ransac import RansacParameters, RansacType
from .reconstruction import Reconstruction
from .reconstruction_estimator import (
    ReconstructionEstimator,
    ReconstructionEstimatorOptions,
    ReconstructionEstimatorSummary,
)
from .triangulation import is_valid_triangulation, reprojection_error, triangulate_dlt
from .types import FeatureCorrespondence2D3D, TrackId, ViewId
from .view_graph import ViewGraph

logger = logging.getLogger(__name__)

# Fewest triangulated tracks for an initial pair to be accepted
MIN_NUM_INITIAL_TRACKS = 10


class IncrementalReconstructionEstimator(ReconstructionEstimator):
    """Incremental Structure-from-Motion over a view graph"""

    def __init__(self, options: ReconstructionEstimatorOptions):
        super().__init__(options)
        self.reconstruction: Optional[Reconstruction] = None
        self.view_graph: Optional[ViewGraph] = None
        self._usable_graph = ViewGraph()
        self.summary = ReconstructionEstimatorSummary()

        self._candidate_views: Set[ViewId] = set()
        self._estimated_views: Set[ViewId] = set()
        self._constant_view_ids: Set[ViewId] = set()
        self._num_views_at_last_full_ba = 0

    def estimate(self, view_graph: ViewGraph,
                 reconstruction: Reconstruction) -> ReconstructionEstimatorSummary:
        """Run incremental SfM reconstruction"""
        start_time = time.time()
        self.reconstruction = reconstruction
        self.view_graph = view_graph
        self.summary = ReconstructionEstimatorSummary()

        component = self._select_component()
        if len(component) < 2:
            return self._fail("No pair of views shares enough verified matches", start_time)

        calibration_start = time.time()
        self._candidate_views = self._calibrate_views(component)
        self.summary.camera_intrinsics_calibration_time = time.time() - calibration_start
        if len(self._candidate_views) < 2:
            return self._fail("Fewer than 2 views could be calibrated", start_time)

        if not self._initialize_reconstruction():
            return self._fail("Could not initialize the reconstruction from any view pair", start_time)

        remaining = len(self._candidate_views) - len(self._estimated_views)
        with tqdm(total=remaining, desc="Adding images",
                  disable=not logger.isEnabledFor(logging.INFO)) as progress:
            failed_views: Set[ViewId] = set()
            while True:
                next_views = self._find_next_views(failed_views)
                if not next_views:
                    break
                added = False
                for view_id in next_views:
                    if self._add_image_to_reconstruction(view_id):
                        added = True
                        progress.update(1)
                        failed_views.clear()
                        self._triangulate_new_points(view_id)
                        self._maybe_bundle_adjust()
                        break
                    failed_views.add(view_id)
                if not added:
                    break

        self._bundle_adjustment()
        self._remove_high_error_points()

        self.summary.estimated_views = {
            view_id for view_id in self._estimated_views
            if reconstruction.view(view_id).estimated
        }
        self.summary.estimated_tracks = {
            track_id for track_id in reconstruction.track_ids()
            if reconstruction.track(track_id).estimated
        }
        self.summary.success = len(self.summary.estimated_views) >= 2
        self.summary.total_time = time.time() - start_time
        self.summary.message = (
            f"Incremental reconstruction estimated {len(self.summary.estimated_views)} of "
            f"{len(self._candidate_views)} candidate views and "
            f"{len(self.summary.estimated_tracks)} tracks."
        )
        return self.summary

    def _fail(self, message: str, start_time: float) -> ReconstructionEstimatorSummary:
        logger.info(message)
        self._reset_estimated_state()
        self.summary.success = False
        self.summary.estimated_views = set()
        self.summary.estimated_tracks = set()
        self.summary.message = message
        self.summary.total_time = time.time() - start_time
        return self.summary

    # ----------------------------------------------------------- preparation

    def _select_component(self) -> Set[ViewId]:
        """Largest connected component using only well-supported edges"""
        usable = ViewGraph()
        for (view_id1, view_id2), info in self.view_graph.get_all_edges().items():
            if self.reconstruction.view(view_id1) is None or self.reconstruction.view(view_id2) is None:
                continue
            if info.num_verified_matches < self.options.min_num_two_view_inliers:
                continue
            usable.add_edge(view_id1, view_id2, info)
        self._usable_graph = usable
        return usable.get_largest_connected_component_ids()

    def _calibrate_views(self, view_ids: Set[ViewId]) -> Set[ViewId]:
        calibrated = set()
        for view_id in view_ids:
            view = self.reconstruction.view(view_id)
            if view.camera.set_from_prior(view.camera_intrinsics_prior,
                                          self.options.default_focal_length_ratio):
                calibrated.add(view_id)
            else:
                logger.debug(f"View {view.name} has no usable focal length; skipping it")
        return calibrated

    def _reset_estimated_state(self) -> None:
        for view_id in self._estimated_views:
            view = self.reconstruction.view(view_id)
            if view is not None:
                view.estimated = False
        for track_id in self.reconstruction.track_ids():
            self.reconstruction.track(track_id).estimated = False
        self._estimated_views = set()
        self._constant_view_ids = set()

    # -------------------------------------------------------- initialization

    def _find_initial_pair_candidates(self) -> List[Tuple[ViewId, ViewId]]:
        """View pairs ordered by decreasing number of verified matches"""
        pairs = []
        for (view_id1, view_id2), info in self._usable_graph.get_all_edges().items():
            if view_id1 in self._candidate_views and view_id2 in self._candidate_views:
                pairs.append((info.num_verified_matches, view_id1, view_id2))
        pairs.sort(key=lambda p: (-p[0], p[1], p[2]))
        return [(view_id1, view_id2) for _, view_id1, view_id2 in pairs]

    def _initialize_reconstruction(self) -> bool:
        """Place the first pair from its two-view geometry and triangulate"""
        start = time.time()
        for view_id1, view_id2 in self._find_initial_pair_candidates():
            info = self._usable_graph.get_edge(view_id1, view_id2)
            view1 = self.reconstruction.view(view_id1)
            view2 = self.reconstruction.view(view_id2)

            view1.camera.orientation = np.zeros(3)
            view1.camera.position = np.zeros(3)
            view2.camera.orientation = info.rotation_2.copy()
            view2.camera.position = info.position_2.copy()
            if np.linalg.norm(info.position_2) < 1e-12:
                logger.debug(f"Pair ({view_id1}, {view_id2}) has no baseline")
                continue

            view1.estimated = True
            view2.estimated = True
            self._estimated_views = {view_id1, view_id2}

            triangulation_start = time.time()
            num_triangulated = self._triangulate_tracks(self._tracks_of_views([view_id1, view_id2]))
            self.summary.triangulation_time += time.time() - triangulation_start

            if num_triangulated >= MIN_NUM_INITIAL_TRACKS:
                logger.info(
                    f"Initial pair: {view1.name} and {view2.name} "
                    f"({info.num_verified_matches} matches, {num_triangulated} points)"
                )
                self._constant_view_ids = {view_id1}
                self.summary.pose_estimation_time += time.time() - start
                self._bundle_adjustment()
                return True

            logger.debug(
                f"Pair ({view_id1}, {view_id2}) triangulated only {num_triangulated} points"
            )
            self._reset_estimated_state()

        self.summary.pose_estimation_time += time.time() - start
        return False

    # ---------------------------------------------------------- localization

    def _num_estimated_observations(self, view_id: ViewId) -> int:
        view = self.reconstruction.view(view_id)
        return sum(
            1 for track_id in view.features
            if self.reconstruction.track(track_id).estimated
        )

    def _find_next_views(self, failed_views: Set[ViewId]) -> List[ViewId]:
        """Unestimated views ordered by the number of observed 3D points"""
        scored = []
        for view_id in self._candidate_views:
            if view_id in self._estimated_views or view_id in failed_views:
                continue
            count = self._num_estimated_observations(view_id)
            if count >= self.options.min_num_absolute_pose_inliers:
                scored.append((count, view_id))
        scored.sort(key=lambda s: (-s[0], s[1]))
        return [view_id for _, view_id in scored]

    def _add_image_to_reconstruction(self, view_id: ViewId) -> bool:
        """Localize a view from its 2D-3D correspondences"""
        start = time.time()
        view = self.reconstruction.view(view_id)
        camera = view.camera

        correspondences = []
        for track_id, feature in view.features.items():
            track = self.reconstruction.track(track_id)
            if not track.estimated:
                continue
            correspondences.append(FeatureCorrespondence2D3D(
                feature=camera.pixel_to_normalized(feature),
                world_point=track.euclidean_point(),
            ))

        params = RansacParameters(
            error_thresh=self.options.absolute_pose_reprojection_error_threshold / camera.focal_length,
            failure_probability=self.options.ransac_failure_probability,
            min_iterations=self.options.ransac_min_iterations,
            max_iterations=self.options.ransac_max_iterations,
            use_mle=self.options.ransac_use_mle,
            rng=self.options.rng,
        )
        pose, ransac_summary = estimate_rigid_transformation_2d_3d(
            params, RansacType.RANSAC, correspondences
        )
        self.summary.pose_estimation_time += time.time() - start

        if pose is None or len(ransac_summary.inliers) < self.options.min_num_absolute_pose_inliers:
            logger.debug(
                f"Could not localize {view.name}: "
                f"{len(ransac_summary.inliers)}/{len(correspondences)} inliers"
            )
            return False

        camera.set_pose(pose.rotation, pose.translation)
        view.estimated = True
        self._estimated_views.add(view_id)
        logger.debug(
            f"Localized {view.name} with {len(ransac_summary.inliers)}/{len(correspondences)} "
            f"inliers in {ransac_summary.num_iterations} iterations"
        )
        return True

    # --------------------------------------------------------- triangulation

    def _tracks_of_views(self, view_ids: List[ViewId]) -> Set[TrackId]:
        track_ids: Set[TrackId] = set()
        for view_id in view_ids:
            track_ids.update(self.reconstruction.view(view_id).track_ids())
        return track_ids

    def _triangulate_tracks(self, track_ids: Set[TrackId]) -> int:
        """Triangulate unestimated tracks seen by at least two estimated views"""
        num_triangulated = 0
        for track_id in sorted(track_ids):
            track = self.reconstruction.track(track_id)
            if track.estimated:
                continue
            observing = [v for v in sorted(track.view_ids) if v in self._estimated_views]
            if len(observing) < 2:
                continue

            cameras = [self.reconstruction.view(v).camera for v in observing]
            pixels = [np.asarray(self.reconstruction.view(v).get_feature(track_id)) for v in observing]
            point = triangulate_dlt([c.projection_matrix() for c in cameras], pixels)
            if point is None:
                continue
            if not is_valid_triangulation(
                cameras, pixels, point,
                self.options.triangulation_max_reprojection_error_in_pixels,
                self.options.min_triangulation_angle_degrees,
            ):
                continue

            track.set_point(point)
            track.estimated = True
            num_triangulated += 1
        return num_triangulated

    def _triangulate_new_points(self, view_id: ViewId) -> None:
        start = time.time()
        num_triangulated = self._triangulate_tracks(self._tracks_of_views([view_id]))
        self.summary.triangulation_time += time.time() - start
        logger.debug(f"Triangulated {num_triangulated} new 3D points for view {view_id}")

    # ---------------------------------------------------- bundle adjustment

    def _maybe_bundle_adjust(self) -> None:
        num_views = len(self._estimated_views)
        last = max(self._num_views_at_last_full_ba, 1)
        growth_percent = 100.0 * (num_views - last) / last
        if growth_percent >= self.options.full_bundle_adjustment_growth_percent:
            self._bundle_adjustment()
            self._remove_high_error_points()

    def _bundle_adjustment(self) -> None:
        """Run bundle adjustment to refine camera poses and 3D points"""
        start = time.time()
        track_ids = [
            track_id for track_id in self.reconstruction.track_ids()
            if self.reconstruction.track(track_id).estimated
        ]
        ba_options = BundleAdjustmentOptions(
            loss=self.options.bundle_adjustment_loss,
            robust_loss_width=self.options.bundle_adjustment_robust_loss_width,
            max_iterations=self.options.bundle_adjustment_max_iterations,
            constant_view_ids=set(self._constant_view_ids),
        )
        ba_summary = bundle_adjust_views_and_tracks(
            self.reconstruction, self._estimated_views, track_ids, ba_options
        )
        if not ba_summary.success:
            logger.debug("Bundle adjustment did not run or failed to converge")
        self._num_views_at_last_full_ba = len(self._estimated_views)
        self.summary.bundle_adjustment_time += time.time() - start

    def _remove_high_error_points(self) -> None:
        """Unestimate tracks whose reprojection error exceeds the threshold in any estimated view"""
        max_error = self.options.max_reprojection_error_in_pixels
        num_removed = 0
        for track_id in self.reconstruction.track_ids():
            track = self.reconstruction.track(track_id)
            if not track.estimated:
                continue
            point = track.point
            for view_id in track.view_ids:
                if view_id not in self._estimated_views:
                    continue
                view = self.reconstruction.view(view_id)
                if reprojection_error(view.camera, point, view.get_feature(track_id)) > max_error:
                    track.estimated = False
                    num_removed += 1
                    break
        if num_removed:
            logger.debug(f"Removed {num_removed} high-error points")
