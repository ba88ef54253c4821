"""
Camera intrinsics priors

Every field is independently "set" or "unset" so that partial metadata
(e.g. only a focal length from EXIF) can be carried through the pipeline.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Prior:
    """A prior value with an explicit set flag"""

    value: List[float] = field(default_factory=list)
    is_set: bool = False

    def set(self, *values: float) -> None:
        self.value = [float(v) for v in values]
        self.is_set = True

    def unset(self) -> None:
        self.value = []
        self.is_set = False

    def get(self, default: Optional[Any] = None):
        """Scalar priors return their single value, vector priors the list"""
        if not self.is_set:
            return default
        if len(self.value) == 1:
            return self.value[0]
        return list(self.value)


_PRIOR_FIELDS = (
    "image_width",
    "image_height",
    "focal_length",
    "principal_point",
    "aspect_ratio",
    "skew",
    "radial_distortion",
)


@dataclass
class CameraIntrinsicsPrior:
    """Known (or partially known) calibration of the camera that took an image"""

    image_width: Prior = field(default_factory=Prior)
    image_height: Prior = field(default_factory=Prior)
    focal_length: Prior = field(default_factory=Prior)
    principal_point: Prior = field(default_factory=Prior)
    aspect_ratio: Prior = field(default_factory=Prior)
    skew: Prior = field(default_factory=Prior)
    radial_distortion: Prior = field(default_factory=Prior)

    @property
    def is_calibrated(self) -> bool:
        return self.focal_length.is_set

    @classmethod
    def calibrated(cls, focal_length: float,
                   principal_point: Optional[List[float]] = None,
                   image_size: Optional[List[int]] = None) -> "CameraIntrinsicsPrior":
        """Convenience constructor for the common 'known focal length' case"""
        prior = cls()
        prior.focal_length.set(focal_length)
        if principal_point is not None:
            prior.principal_point.set(*principal_point)
        if image_size is not None:
            prior.image_width.set(image_size[0])
            prior.image_height.set(image_size[1])
        return prior

    def to_dict(self) -> Dict[str, Any]:
        """Export only the fields that are set"""
        return {
            name: list(getattr(self, name).value)
            for name in _PRIOR_FIELDS
            if getattr(self, name).is_set
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraIntrinsicsPrior":
        prior = cls()
        for name, value in data.items():
            if name not in _PRIOR_FIELDS:
                raise ValueError(f"Unknown camera intrinsics prior field: {name}")
            if isinstance(value, (list, tuple)):
                getattr(prior, name).set(*value)
            else:
                getattr(prior, name).set(value)
        return prior
