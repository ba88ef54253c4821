"""
Track building from pairwise feature correspondences

Observations (view id, feature) that are matched to each other are merged
with a union-find structure; every connected component becomes a track.
"""

import logging
from collections import defaultdict
from typing import Dict, Hashable, List, Tuple

from .reconstruction import Reconstruction
from .types import Feature, INVALID_TRACK_ID, ViewId, make_feature

logger = logging.getLogger(__name__)

Observation = Tuple[ViewId, Feature]


class UnionFind:
    """Disjoint sets with path compression and union by size"""

    def __init__(self):
        self.parent: Dict[Hashable, Hashable] = {}
        self.size: Dict[Hashable, int] = {}

    def add(self, item: Hashable) -> None:
        if item not in self.parent:
            self.parent[item] = item
            self.size[item] = 1

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: Hashable, b: Hashable) -> Hashable:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a
        if self.size[root_a] < self.size[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        self.size[root_a] += self.size.pop(root_b)
        return root_a

    def components(self) -> List[List[Hashable]]:
        """Members grouped by root, in first-insertion order"""
        groups: Dict[Hashable, List[Hashable]] = defaultdict(list)
        for item in self.parent:
            groups[self.find(item)].append(item)
        return list(groups.values())

    def __len__(self) -> int:
        return len(self.parent)


class TrackBuilder:
    """
    Accumulates feature correspondences and turns them into tracks

    Components with fewer than min_track_length or more than
    max_track_length observations are dropped; long components are usually
    the product of a wrong match chaining two points together.
    """

    def __init__(self, min_track_length: int = 2, max_track_length: int = 50):
        if min_track_length < 2:
            raise ValueError(f"min_track_length must be at least 2, got {min_track_length}")
        if max_track_length < min_track_length:
            raise ValueError(
                f"max_track_length ({max_track_length}) must be >= min_track_length ({min_track_length})"
            )
        self.min_track_length = min_track_length
        self.max_track_length = max_track_length
        self._observations = UnionFind()
        self._num_correspondences = 0

    def add_feature_correspondence(self, view_id1: ViewId, feature1: Feature,
                                   view_id2: ViewId, feature2: Feature) -> None:
        if view_id1 == view_id2:
            logger.warning(f"Ignoring correspondence between two features of view {view_id1}")
            return
        observation1 = (view_id1, make_feature(feature1))
        observation2 = (view_id2, make_feature(feature2))
        self._observations.union(observation1, observation2)
        self._num_correspondences += 1

    def num_correspondences(self) -> int:
        return self._num_correspondences

    def num_observations(self) -> int:
        return len(self._observations)

    def build_tracks(self, reconstruction: Reconstruction) -> int:
        """
        Add one track per valid connected component to the reconstruction

        Returns:
            Number of tracks added
        """
        components = self._observations.components()
        num_too_short = 0
        num_too_long = 0
        num_inconsistent = 0
        num_added = 0

        for component in components:
            if len(component) < self.min_track_length:
                num_too_short += 1
                continue
            if len(component) > self.max_track_length:
                num_too_long += 1
                continue

            track_id = reconstruction.add_track(component)
            if track_id == INVALID_TRACK_ID:
                # Two features of the same view were chained together
                num_inconsistent += 1
                continue
            num_added += 1

        logger.info(
            f"Built {num_added} tracks from {len(components)} components "
            f"({num_too_short} too short, {num_too_long} too long, "
            f"{num_inconsistent} inconsistent)"
        )
        return num_added

    def clear(self) -> None:
        self._observations = UnionFind()
        self._num_correspondences = 0
