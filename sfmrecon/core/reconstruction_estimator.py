"""
Reconstruction estimator interface

A reconstruction estimator takes a view graph and a reconstruction holding
unestimated views and tracks, estimates as much of it as it can and marks
the estimated views/tracks. Estimators are created fresh for every attempt
from a ReconstructionEstimatorOptions object.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set

import numpy as np

from .reconstruction import Reconstruction
from .types import TrackId, ViewId
from .view_graph import ViewGraph


class ReconstructionEstimatorType(Enum):
    """Available estimation strategies"""
    INCREMENTAL = "incremental"


@dataclass
class ReconstructionEstimatorOptions:
    """Configuration for reconstruction estimation"""

    reconstruction_estimator_type: ReconstructionEstimatorType = ReconstructionEstimatorType.INCREMENTAL

    # Random source shared with the robust estimators for reproducibility
    rng: Optional[np.random.Generator] = field(default=None, repr=False)

    # View graph edges with fewer verified matches are ignored
    min_num_two_view_inliers: int = 30

    # Focal length (as a fraction of the larger image side) for views without a prior
    default_focal_length_ratio: Optional[float] = None

    # Absolute pose (P3P) RANSAC
    absolute_pose_reprojection_error_threshold: float = 4.0  # pixels
    min_num_absolute_pose_inliers: int = 30
    ransac_failure_probability: float = 0.001
    ransac_min_iterations: int = 10
    ransac_max_iterations: int = 1000
    ransac_use_mle: bool = True

    # Triangulation
    min_triangulation_angle_degrees: float = 2.0
    triangulation_max_reprojection_error_in_pixels: float = 15.0

    # Observations with a larger error are removed after bundle adjustment
    max_reprojection_error_in_pixels: float = 5.0

    # Bundle adjustment
    bundle_adjustment_loss: str = "soft_l1"
    bundle_adjustment_robust_loss_width: float = 2.0
    bundle_adjustment_max_iterations: int = 100
    # Run a full bundle adjustment when the model grew by this many percent
    full_bundle_adjustment_growth_percent: float = 5.0

    def __post_init__(self):
        if isinstance(self.reconstruction_estimator_type, str):
            self.reconstruction_estimator_type = ReconstructionEstimatorType(self.reconstruction_estimator_type)
        if self.min_num_two_view_inliers < 0:
            raise ValueError(f"min_num_two_view_inliers must be >= 0, got {self.min_num_two_view_inliers}")
        if self.min_num_absolute_pose_inliers < 3:
            raise ValueError(
                f"min_num_absolute_pose_inliers must be >= 3, got {self.min_num_absolute_pose_inliers}"
            )
        if self.rng is None:
            self.rng = np.random.default_rng()

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ReconstructionEstimatorOptions":
        config_dict = dict(config_dict)
        seed = config_dict.pop("seed", None)
        if seed is not None:
            config_dict["rng"] = np.random.default_rng(seed)
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != "rng"}
        data["reconstruction_estimator_type"] = self.reconstruction_estimator_type.value
        return data


@dataclass
class ReconstructionEstimatorSummary:
    """Result of one estimation attempt"""

    success: bool = False
    estimated_views: Set[ViewId] = field(default_factory=set)
    estimated_tracks: Set[TrackId] = field(default_factory=set)

    # Timings in seconds
    camera_intrinsics_calibration_time: float = 0.0
    pose_estimation_time: float = 0.0
    triangulation_time: float = 0.0
    bundle_adjustment_time: float = 0.0
    total_time: float = 0.0

    message: str = ""


class ReconstructionEstimator(ABC):
    """Estimates camera poses and 3D points of a reconstruction"""

    def __init__(self, options: ReconstructionEstimatorOptions):
        self.options = options

    @abstractmethod
    def estimate(self, view_graph: ViewGraph,
                 reconstruction: Reconstruction) -> ReconstructionEstimatorSummary:
        """Estimate in place; the summary lists what was estimated"""


def create_reconstruction_estimator(options: ReconstructionEstimatorOptions) -> ReconstructionEstimator:
    """Instantiate the estimator selected by the options"""
    if options.reconstruction_estimator_type == ReconstructionEstimatorType.INCREMENTAL:
        from .incremental_estimator import IncrementalReconstructionEstimator
        return IncrementalReconstructionEstimator(options)
    raise ValueError(f"Unsupported reconstruction estimator type: {options.reconstruction_estimator_type}")
