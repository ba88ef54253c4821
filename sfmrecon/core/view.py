"""
View: one image inside a reconstruction
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from .camera import Camera
from .camera_intrinsics_prior import CameraIntrinsicsPrior
from .types import Feature, TrackId


@dataclass
class View:
    """Image name, calibration prior, camera and observed features"""

    name: str
    camera_intrinsics_prior: CameraIntrinsicsPrior = field(default_factory=CameraIntrinsicsPrior)
    camera: Camera = field(default_factory=Camera)
    estimated: bool = False

    # Reverse index of the observations held by this view
    features: Dict[TrackId, Feature] = field(default_factory=dict)

    @property
    def is_estimated(self) -> bool:
        return self.estimated

    def num_features(self) -> int:
        return len(self.features)

    def track_ids(self) -> Set[TrackId]:
        return set(self.features.keys())

    def get_feature(self, track_id: TrackId) -> Optional[Feature]:
        return self.features.get(track_id)

    def add_feature(self, track_id: TrackId, feature: Feature) -> None:
        self.features[track_id] = feature

    def remove_feature(self, track_id: TrackId) -> bool:
        return self.features.pop(track_id, None) is not None
