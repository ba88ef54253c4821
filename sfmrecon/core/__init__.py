"""
Core SfM components
"""

from .camera import Camera
from .camera_intrinsics_prior import CameraIntrinsicsPrior, Prior
from .features_and_matches import (
    FeatureExtractorAndMatcher,
    FeaturesAndMatchesDatabase,
    InMemoryFeaturesAndMatchesDatabase,
    SiftFeatureExtractorAndMatcher,
    SiftMatcherOptions,
)
from .geometric_verification import GeometricVerification, GeometricVerificationOptions
from .ransac import (
    Estimator,
    RansacParameters,
    RansacSummary,
    RansacType,
    SampleConsensusEstimator,
    create_estimator,
)
from .reconstruction import Reconstruction
from .reconstruction_builder import ReconstructionBuilder, ReconstructionBuilderOptions
from .reconstruction_estimator import (
    ReconstructionEstimator,
    ReconstructionEstimatorOptions,
    ReconstructionEstimatorSummary,
    ReconstructionEstimatorType,
    create_reconstruction_estimator,
)
from .track import Track
from .track_builder import TrackBuilder
from .twoview_info import TwoViewInfo, swap_cameras
from .types import (
    FeatureCorrespondence,
    FeatureCorrespondence2D3D,
    ImagePairMatch,
    INVALID_CAMERA_INTRINSICS_GROUP_ID,
    INVALID_TRACK_ID,
    INVALID_VIEW_ID,
)
from .view import View
from .view_graph import ViewGraph

__all__ = [
    # Data model
    "Camera",
    "CameraIntrinsicsPrior",
    "Prior",
    "View",
    "Track",
    "Reconstruction",
    "TwoViewInfo",
    "swap_cameras",
    "ViewGraph",
    "FeatureCorrespondence",
    "FeatureCorrespondence2D3D",
    "ImagePairMatch",
    "INVALID_VIEW_ID",
    "INVALID_TRACK_ID",
    "INVALID_CAMERA_INTRINSICS_GROUP_ID",
    # Robust estimation
    "Estimator",
    "RansacParameters",
    "RansacSummary",
    "RansacType",
    "SampleConsensusEstimator",
    "create_estimator",
    # Pipeline
    "TrackBuilder",
    "GeometricVerification",
    "GeometricVerificationOptions",
    "FeaturesAndMatchesDatabase",
    "InMemoryFeaturesAndMatchesDatabase",
    "FeatureExtractorAndMatcher",
    "SiftFeatureExtractorAndMatcher",
    "SiftMatcherOptions",
    "ReconstructionEstimator",
    "ReconstructionEstimatorOptions",
    "ReconstructionEstimatorSummary",
    "ReconstructionEstimatorType",
    "create_reconstruction_estimator",
    "ReconstructionBuilder",
    "ReconstructionBuilderOptions",
]
