"""
Incremental Structure-from-Motion reconstruction builder
Robust estimation, view graph, track building and incremental reconstruction
"""

__version__ = "0.1.0"

# Lazy imports so that `import sfmrecon` stays cheap (cv2 / scipy load on first use)
def __getattr__(name):
    """Lazy import for module attributes"""

    if name == "ReconstructionBuilder":
        from .core.reconstruction_builder import ReconstructionBuilder
        return ReconstructionBuilder
    elif name == "ReconstructionBuilderOptions":
        from .core.reconstruction_builder import ReconstructionBuilderOptions
        return ReconstructionBuilderOptions
    elif name == "ReconstructionEstimatorOptions":
        from .core.reconstruction_estimator import ReconstructionEstimatorOptions
        return ReconstructionEstimatorOptions
    elif name == "Reconstruction":
        from .core.reconstruction import Reconstruction
        return Reconstruction
    elif name == "ViewGraph":
        from .core.view_graph import ViewGraph
        return ViewGraph
    elif name == "TrackBuilder":
        from .core.track_builder import TrackBuilder
        return TrackBuilder
    elif name == "CameraIntrinsicsPrior":
        from .core.camera_intrinsics_prior import CameraIntrinsicsPrior
        return CameraIntrinsicsPrior
    elif name == "InMemoryFeaturesAndMatchesDatabase":
        from .core.features_and_matches import InMemoryFeaturesAndMatchesDatabase
        return InMemoryFeaturesAndMatchesDatabase
    elif name == "GeometricVerification":
        from .core.geometric_verification import GeometricVerification
        return GeometricVerification
    # Utilities
    elif name == "save_reconstruction_info":
        from .utils.io_utils import save_reconstruction_info
        return save_reconstruction_info
    elif name == "load_reconstruction":
        from .utils.io_utils import load_reconstruction
        return load_reconstruction
    elif name == "save_matches":
        from .utils.io_utils import save_matches
        return save_matches
    elif name == "load_matches":
        from .utils.io_utils import load_matches
        return load_matches

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

__all__ = [
    # Core components
    "ReconstructionBuilder",
    "ReconstructionBuilderOptions",
    "ReconstructionEstimatorOptions",
    "Reconstruction",
    "ViewGraph",
    "TrackBuilder",
    "CameraIntrinsicsPrior",
    "InMemoryFeaturesAndMatchesDatabase",
    "GeometricVerification",

    # Utilities
    "save_reconstruction_info",
    "load_reconstruction",
    "save_matches",
    "load_matches",
]
