"""
Unit tests for union-find track building
"""

import pytest
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfmrecon.core.reconstruction import Reconstruction
from sfmrecon.core.track_builder import TrackBuilder, UnionFind


def make_reconstruction(num_views):
    reconstruction = Reconstruction()
    for i in range(num_views):
        reconstruction.add_view(f"img_{i}.jpg")
    return reconstruction


class TestUnionFind:
    """Test the disjoint set structure"""

    def test_union_and_find(self):
        """Test that unioned items share a root"""
        uf = UnionFind()
        uf.union("a", "b")
        uf.union("c", "d")
        uf.union("b", "d")
        uf.add("e")

        assert uf.find("a") == uf.find("c")
        assert uf.find("e") != uf.find("a")
        assert len(uf) == 5

    def test_components_in_insertion_order(self):
        """Test that components are reported deterministically"""
        uf = UnionFind()
        uf.union(1, 2)
        uf.union(3, 4)
        uf.union(2, 5)

        assert uf.components() == [[1, 2, 5], [3, 4]]


class TestTrackBuilder:
    """Test track building from correspondences"""

    def test_invalid_length_bounds(self):
        """Test that inconsistent bounds are rejected"""
        with pytest.raises(ValueError):
            TrackBuilder(min_track_length=1)
        with pytest.raises(ValueError):
            TrackBuilder(min_track_length=4, max_track_length=3)

    def test_chained_correspondences(self):
        """Test that correspondences chaining through views form one track"""
        reconstruction = make_reconstruction(3)
        builder = TrackBuilder()
        builder.add_feature_correspondence(0, (1.0, 1.0), 1, (2.0, 2.0))
        builder.add_feature_correspondence(1, (2.0, 2.0), 2, (3.0, 3.0))
        builder.add_feature_correspondence(0, (5.0, 5.0), 2, (6.0, 6.0))

        assert builder.build_tracks(reconstruction) == 2
        lengths = sorted(reconstruction.track(t).num_views() for t in reconstruction.track_ids())
        assert lengths == [2, 3]

        view0 = reconstruction.view(0)
        assert set(view0.features.values()) == {(1.0, 1.0), (5.0, 5.0)}

    def test_track_length_bound(self):
        """Test that components longer than max_track_length are dropped"""
        reconstruction = make_reconstruction(4)
        builder = TrackBuilder(min_track_length=2, max_track_length=3)
        for i in range(3):
            builder.add_feature_correspondence(i, (0.0, 0.0), i + 1, (0.0, 0.0))
        builder.add_feature_correspondence(0, (9.0, 9.0), 1, (9.0, 9.0))

        assert builder.build_tracks(reconstruction) == 1
        for track_id in reconstruction.track_ids():
            assert 2 <= reconstruction.track(track_id).num_views() <= 3

    def test_min_track_length(self):
        """Test that short components are dropped"""
        reconstruction = make_reconstruction(3)
        builder = TrackBuilder(min_track_length=3)
        builder.add_feature_correspondence(0, (1.0, 1.0), 1, (1.0, 1.0))

        assert builder.build_tracks(reconstruction) == 0
        assert reconstruction.num_tracks() == 0

    def test_same_view_correspondence_ignored(self):
        """Test that a correspondence within one view is ignored"""
        builder = TrackBuilder()
        builder.add_feature_correspondence(0, (1.0, 1.0), 0, (2.0, 2.0))

        assert builder.num_correspondences() == 0
        assert builder.num_observations() == 0

    def test_inconsistent_component_rejected(self):
        """Test that a component with two features of one view is not added"""
        reconstruction = make_reconstruction(2)
        builder = TrackBuilder()
        builder.add_feature_correspondence(0, (1.0, 1.0), 1, (5.0, 5.0))
        builder.add_feature_correspondence(0, (2.0, 2.0), 1, (5.0, 5.0))

        assert builder.build_tracks(reconstruction) == 0
        assert reconstruction.num_tracks() == 0

    def test_clear(self):
        """Test that clear resets the builder"""
        builder = TrackBuilder()
        builder.add_feature_correspondence(0, (1.0, 1.0), 1, (5.0, 5.0))
        builder.clear()

        assert builder.num_correspondences() == 0
        assert builder.build_tracks(make_reconstruction(2)) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
