"""
Track: observations of a single putative 3D point
"""

from dataclasses import dataclass, field
from typing import Set

import numpy as np

from .types import ViewId


@dataclass
class Track:
    """A 3D point (homogeneous) and the views observing it"""

    view_ids: Set[ViewId] = field(default_factory=set)
    point: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    color: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.uint8))
    estimated: bool = False

    @property
    def is_estimated(self) -> bool:
        return self.estimated

    def num_views(self) -> int:
        return len(self.view_ids)

    def add_view(self, view_id: ViewId) -> bool:
        if view_id in self.view_ids:
            return False
        self.view_ids.add(view_id)
        return True

    def remove_view(self, view_id: ViewId) -> bool:
        if view_id not in self.view_ids:
            return False
        self.view_ids.discard(view_id)
        return True

    def euclidean_point(self) -> np.ndarray:
        return self.point[:3] / self.point[3]

    def set_point(self, point: np.ndarray) -> None:
        point = np.asarray(point, dtype=np.float64)
        if point.shape[0] == 3:
            point = np.append(point, 1.0)
        self.point = point
