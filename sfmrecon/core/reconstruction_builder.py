"""
Reconstruction builder

Top-level entry point: collects images and their matches, builds tracks and
repeatedly runs a reconstruction estimator. Every estimation attempt yields
one reconstruction (a connected piece of the scene); its views and tracks are
then removed and the estimator is run again on what is left.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .camera_intrinsics_prior import CameraIntrinsicsPrior
from .features_and_matches import (
    FeatureExtractorAndMatcher,
    FeaturesAndMatchesDatabase,
    SiftFeatureExtractorAndMatcher,
)
from .geometric_verification import GeometricVerificationOptions
from .reconstruction import Reconstruction
from .reconstruction_estimator import ReconstructionEstimatorOptions, create_reconstruction_estimator
from .track_builder import TrackBuilder
from .types import (
    CameraIntrinsicsGroupId,
    INVALID_CAMERA_INTRINSICS_GROUP_ID,
    INVALID_VIEW_ID,
    ImagePairMatch,
)
from .view_graph import ViewGraph

logger = logging.getLogger(__name__)


@dataclass
class ReconstructionBuilderOptions:
    """Configuration for the reconstruction builder"""

    num_threads: int = 1

    # A single random source drives every robust estimation of a run
    seed: Optional[int] = None
    rng: Optional[np.random.Generator] = field(default=None, repr=False)

    # Drop matches and views without a focal length prior
    only_calibrated_views: bool = False

    # Image pairs with fewer verified matches are not added to the view graph
    min_num_inlier_matches: int = 30

    # Stop after the first (largest) reconstruction
    reconstruct_largest_connected_component: bool = False

    min_track_length: int = 2
    max_track_length: int = 50

    reconstruction_estimator_options: ReconstructionEstimatorOptions = field(
        default_factory=ReconstructionEstimatorOptions
    )

    # Level applied to the package logger, e.g. "INFO"; None leaves it untouched
    log_level: Optional[str] = None

    def __post_init__(self):
        if self.num_threads <= 0:
            raise ValueError(f"num_threads must be > 0, got {self.num_threads}")
        if self.min_num_inlier_matches < 0:
            raise ValueError(f"min_num_inlier_matches must be >= 0, got {self.min_num_inlier_matches}")
        if self.min_track_length < 2:
            raise ValueError(f"min_track_length must be at least 2, got {self.min_track_length}")
        if self.max_track_length < self.min_track_length:
            raise ValueError(
                f"max_track_length ({self.max_track_length}) must be >= "
                f"min_track_length ({self.min_track_length})"
            )
        if isinstance(self.reconstruction_estimator_options, dict):
            self.reconstruction_estimator_options = ReconstructionEstimatorOptions.from_dict(
                self.reconstruction_estimator_options
            )
        if self.rng is None:
            self.rng = np.random.default_rng(self.seed)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ReconstructionBuilderOptions":
        """Create options from a (e.g. YAML/JSON loaded) dictionary"""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != "rng"}
        data["reconstruction_estimator_options"] = self.reconstruction_estimator_options.to_dict()
        return data


class ReconstructionBuilder:
    """
    Builds one or more reconstructions from a collection of images

    Typical use:

        builder = ReconstructionBuilder(options, database)
        for path in image_paths:
            builder.add_image_with_camera_intrinsics_prior(path, prior)
        builder.extract_and_match_features()
        success, reconstructions = builder.build_reconstruction()

    Matches computed elsewhere can be fed with add_two_view_match instead of
    extract_and_match_features.
    """

    def __init__(self, options: ReconstructionBuilderOptions,
                 features_and_matches_database: Optional[FeaturesAndMatchesDatabase] = None,
                 feature_extractor_and_matcher: Optional[FeatureExtractorAndMatcher] = None):
        if options.num_threads <= 0:
            raise ValueError(f"num_threads must be > 0, got {options.num_threads}")

        # Each builder owns its random source and hands it to the estimator
        if options.seed is not None:
            rng = np.random.default_rng(options.seed)
        else:
            rng = options.rng.spawn(1)[0]
        self.options = dataclasses.replace(options, rng=rng)
        self.options.reconstruction_estimator_options = dataclasses.replace(
            options.reconstruction_estimator_options, rng=rng
        )
        if self.options.log_level is not None:
            logging.getLogger("sfmrecon").setLevel(self.options.log_level)

        self.features_and_matches_database = features_and_matches_database
        if feature_extractor_and_matcher is None and features_and_matches_database is not None:
            feature_extractor_and_matcher = SiftFeatureExtractorAndMatcher(
                features_and_matches_database,
                verification_options=GeometricVerificationOptions(
                    num_threads=self.options.num_threads,
                    seed=self.options.seed,
                    min_num_inlier_matches=self.options.min_num_inlier_matches,
                    default_focal_length_ratio=(
                        self.options.reconstruction_estimator_options.default_focal_length_ratio
                    ),
                ),
            )
        self.feature_extractor_and_matcher = feature_extractor_and_matcher

        self.reconstruction = Reconstruction()
        self.view_graph = ViewGraph()
        self.track_builder = TrackBuilder(self.options.min_track_length, self.options.max_track_length)
        self.image_paths: List[str] = []
        self._features_extracted = False

    @classmethod
    def from_reconstruction(cls, options: ReconstructionBuilderOptions,
                            reconstruction: Reconstruction,
                            view_graph: ViewGraph) -> "ReconstructionBuilder":
        """Builder over an existing reconstruction and view graph; extraction is unavailable"""
        builder = cls(options)
        builder.reconstruction = reconstruction
        builder.view_graph = view_graph
        return builder

    # ---------------------------------------------------------------- images

    def _add_view_to_reconstruction(self, image_path: str,
                                    camera_intrinsics_prior: Optional[CameraIntrinsicsPrior],
                                    camera_intrinsics_group_id: CameraIntrinsicsGroupId) -> bool:
        image_name = Path(image_path).name
        view_id = self.reconstruction.add_view(
            image_name, camera_intrinsics_group_id, camera_intrinsics_prior
        )
        if view_id == INVALID_VIEW_ID:
            logger.info(f"Could not add {image_name} to the reconstruction.")
            return False
        return True

    def add_image(self, image_path: str,
                  camera_intrinsics_group_id: CameraIntrinsicsGroupId = INVALID_CAMERA_INTRINSICS_GROUP_ID) -> bool:
        """Add an image without calibration information"""
        if not self._add_view_to_reconstruction(image_path, None, camera_intrinsics_group_id):
            return False
        self.image_paths.append(str(image_path))
        if self.feature_extractor_and_matcher is None:
            return True
        return self.feature_extractor_and_matcher.add_image(str(image_path))

    def add_image_with_camera_intrinsics_prior(
        self, image_path: str,
        camera_intrinsics_prior: CameraIntrinsicsPrior,
        camera_intrinsics_group_id: CameraIntrinsicsGroupId = INVALID_CAMERA_INTRINSICS_GROUP_ID,
    ) -> bool:
        """Add an image together with its (partial) calibration"""
        if not self._add_view_to_reconstruction(image_path, camera_intrinsics_prior,
                                                camera_intrinsics_group_id):
            return False
        self.image_paths.append(str(image_path))
        if self.feature_extractor_and_matcher is None:
            return True
        return self.feature_extractor_and_matcher.add_image(str(image_path), camera_intrinsics_prior)

    def remove_uncalibrated_views(self) -> None:
        """Remove views without a focal length prior from the reconstruction and view graph"""
        for view_id in self.reconstruction.view_ids():
            view = self.reconstruction.view(view_id)
            if not view.camera_intrinsics_prior.focal_length.is_set:
                self.reconstruction.remove_view(view_id)
                self.view_graph.remove_view(view_id)

    # --------------------------------------------------------------- matches

    def extract_and_match_features(self) -> bool:
        """Run the feature extractor/matcher and add its verified matches"""
        if self._features_extracted:
            raise RuntimeError("extract_and_match_features may only be called once")
        if self.view_graph.num_views() != 0:
            raise RuntimeError(
                "Cannot call extract_and_match_features after two-view matches have been added"
            )
        if self.feature_extractor_and_matcher is None or self.features_and_matches_database is None:
            raise RuntimeError("No feature extractor and matcher is available")

        self.feature_extractor_and_matcher.extract_and_match_features()
        self._features_extracted = True

        num_images = len(self.image_paths)
        num_total_view_pairs = num_images * (num_images - 1) // 2
        logger.info(
            f"{self.features_and_matches_database.num_matches()} of {num_total_view_pairs} "
            f"view pairs were matched and geometrically verified."
        )

        # Priors may have been completed by the extractor (e.g. image size)
        for image_name in self.features_and_matches_database.image_names_of_camera_intrinsics_priors():
            view_id = self.reconstruction.view_id_from_name(image_name)
            if view_id == INVALID_VIEW_ID:
                continue
            self.reconstruction.view(view_id).camera_intrinsics_prior = (
                self.features_and_matches_database.get_camera_intrinsics_prior(image_name)
            )

        for image1, image2 in self.features_and_matches_database.image_names_of_matches():
            match = self.features_and_matches_database.get_image_pair_match(image1, image2)
            self.add_two_view_match(image1, image2, match)
        return True

    def add_two_view_match(self, image1: str, image2: str, match: ImagePairMatch) -> bool:
        """
        Add a verified image pair match to the view graph and the track builder

        Returns:
            True if the match was added
        """
        view_id1 = self.reconstruction.view_id_from_name(image1)
        view_id2 = self.reconstruction.view_id_from_name(image2)
        if view_id1 == INVALID_VIEW_ID:
            raise ValueError(
                f"Tried to add a match for {image1} but it does not exist in the reconstruction"
            )
        if view_id2 == INVALID_VIEW_ID:
            raise ValueError(
                f"Tried to add a match for {image2} but it does not exist in the reconstruction"
            )

        # Uncalibrated views would otherwise enter the tracks
        if self.options.only_calibrated_views:
            view1 = self.reconstruction.view(view_id1)
            view2 = self.reconstruction.view(view_id2)
            if (not view1.camera_intrinsics_prior.focal_length.is_set
                    or not view2.camera_intrinsics_prior.focal_length.is_set):
                logger.debug(f"Skipping match ({image1}, {image2}) with an uncalibrated view")
                return False

        if match.num_correspondences() < self.options.min_num_inlier_matches:
            logger.debug(
                f"Skipping match ({image1}, {image2}) with only "
                f"{match.num_correspondences()} correspondences"
            )
            return False

        # The view graph orients the edge from the smaller to the larger id
        self.view_graph.add_edge(view_id1, view_id2, match.twoview_info)
        for correspondence in match.correspondences:
            self.track_builder.add_feature_correspondence(
                view_id1, correspondence.feature1, view_id2, correspondence.feature2
            )
        return True

    # -------------------------------------------------------- reconstruction

    def _create_estimated_subreconstruction(self) -> Reconstruction:
        subreconstruction = self.reconstruction.copy()
        for view_id in subreconstruction.view_ids():
            if not subreconstruction.view(view_id).estimated:
                subreconstruction.remove_view(view_id)
        for track_id in subreconstruction.track_ids():
            if not subreconstruction.track(track_id).estimated:
                subreconstruction.remove_track(track_id)
        return subreconstruction

    def _remove_estimated_views_and_tracks(self) -> None:
        for view_id in self.reconstruction.view_ids():
            if self.reconstruction.view(view_id).estimated:
                self.reconstruction.remove_view(view_id)
                self.view_graph.remove_view(view_id)
        for track_id in self.reconstruction.track_ids():
            if self.reconstruction.track(track_id).estimated:
                self.reconstruction.remove_track(track_id)

    def build_reconstruction(self) -> Tuple[bool, List[Reconstruction]]:
        """
        Estimate as many reconstructions as possible

        Returns:
            (success, reconstructions); success is True if at least one
            reconstruction was estimated
        """
        if self.view_graph.num_views() < 2:
            raise RuntimeError(
                "At least 2 images must be provided in order to create a reconstruction."
            )

        # Tracks may have been provided with the reconstruction
        if self.reconstruction.num_tracks() == 0:
            self.track_builder.build_tracks(self.reconstruction)

        if self.options.only_calibrated_views:
            logger.info("Removing uncalibrated views.")
            self.remove_uncalibrated_views()

        reconstructions: List[Reconstruction] = []
        while self.reconstruction.num_views() > 1:
            logger.info(
                f"Attempting to reconstruct {self.reconstruction.num_views()} images from "
                f"{self.view_graph.num_edges()} two view matches."
            )

            estimator = create_reconstruction_estimator(self.options.reconstruction_estimator_options)
            summary = estimator.estimate(self.view_graph, self.reconstruction)
            if not summary.success:
                return len(reconstructions) > 0, reconstructions
            if not summary.estimated_views:
                logger.warning("Estimator reported success without estimating any view.")
                return len(reconstructions) > 0, reconstructions

            logger.info(
                f"\nReconstruction estimation statistics: "
                f"\n\tNum estimated views = {len(summary.estimated_views)}"
                f"\n\tNum input views = {self.reconstruction.num_views()}"
                f"\n\tNum estimated tracks = {len(summary.estimated_tracks)}"
                f"\n\tNum input tracks = {self.reconstruction.num_tracks()}"
                f"\n\tPose estimation time = {summary.pose_estimation_time:.3f}"
                f"\n\tTriangulation time = {summary.triangulation_time:.3f}"
                f"\n\tBundle Adjustment time = {summary.bundle_adjustment_time:.3f}"
                f"\n\tTotal time = {summary.total_time:.3f}\n\n"
                f"{summary.message}"
            )

            reconstructions.append(self._create_estimated_subreconstruction())
            self._remove_estimated_views_and_tracks()

            if self.options.reconstruct_largest_connected_component:
                return len(reconstructions) > 0, reconstructions

            if self.reconstruction.num_views() < 3:
                logger.info("No more reconstructions can be estimated.")
                return len(reconstructions) > 0, reconstructions

        return True, reconstructions
