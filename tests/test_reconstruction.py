"""
Unit tests for the reconstruction container
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfmrecon.core.camera_intrinsics_prior import CameraIntrinsicsPrior
from sfmrecon.core.reconstruction import Reconstruction
from sfmrecon.core.types import INVALID_TRACK_ID, INVALID_VIEW_ID


class TestViews:
    """Test view bookkeeping"""

    def test_view_name_uniqueness(self):
        """Test that a duplicate name is rejected without adding a view"""
        reconstruction = Reconstruction()
        assert reconstruction.add_view("a.jpg") == 0
        assert reconstruction.add_view("a.jpg") == INVALID_VIEW_ID
        assert reconstruction.num_views() == 1

    def test_ids_never_reused(self):
        """Test that removed ids are not handed out again"""
        reconstruction = Reconstruction()
        first = reconstruction.add_view("a.jpg")
        reconstruction.remove_view(first)
        second = reconstruction.add_view("a.jpg")

        assert second != first
        assert reconstruction.view_id_from_name("a.jpg") == second

    def test_prior_is_copied(self):
        """Test that the stored prior is independent of the caller's object"""
        prior = CameraIntrinsicsPrior.calibrated(500.0)
        reconstruction = Reconstruction()
        view_id = reconstruction.add_view("a.jpg", camera_intrinsics_prior=prior)
        prior.focal_length.set(1.0)

        assert reconstruction.view(view_id).camera_intrinsics_prior.focal_length.get() == 500.0

    def test_camera_intrinsics_groups(self):
        """Test shared calibration groups"""
        reconstruction = Reconstruction()
        a = reconstruction.add_view("a.jpg", camera_intrinsics_group_id=7)
        b = reconstruction.add_view("b.jpg", camera_intrinsics_group_id=7)
        c = reconstruction.add_view("c.jpg")

        assert reconstruction.view_ids_in_camera_intrinsics_group(7) == {a, b}
        assert reconstruction.camera_intrinsics_group_id_from_view_id(c) not in (7, -1)
        assert reconstruction.num_camera_intrinsics_groups() == 2

        reconstruction.remove_view(a)
        reconstruction.remove_view(b)
        assert 7 not in reconstruction.camera_intrinsics_group_ids()


class TestTracks:
    """Test track bookkeeping"""

    def setup_method(self):
        self.reconstruction = Reconstruction()
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            self.reconstruction.add_view(name)

    def test_add_track(self):
        """Test that a track links both ways"""
        track_id = self.reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])

        assert track_id != INVALID_TRACK_ID
        assert self.reconstruction.track(track_id).view_ids == {0, 1}
        assert self.reconstruction.view(0).get_feature(track_id) == (1.0, 2.0)

    def test_invalid_tracks(self):
        """Test rejection of short, duplicated or dangling observations"""
        assert self.reconstruction.add_track([(0, (1.0, 2.0))]) == INVALID_TRACK_ID
        assert self.reconstruction.add_track([(0, (1.0, 2.0)), (0, (3.0, 4.0))]) == INVALID_TRACK_ID
        assert self.reconstruction.add_track([(0, (1.0, 2.0)), (9, (3.0, 4.0))]) == INVALID_TRACK_ID
        assert self.reconstruction.num_tracks() == 0

    def test_remove_view_detaches_tracks(self):
        """Test that removing a view keeps its tracks but detaches them"""
        track_id = self.reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])

        assert self.reconstruction.remove_view(0)
        assert self.reconstruction.track(track_id).view_ids == {1}
        assert not self.reconstruction.remove_view(0)

    def test_remove_track(self):
        """Test that removing a track removes the view features"""
        track_id = self.reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])

        assert self.reconstruction.remove_track(track_id)
        assert self.reconstruction.view(0).num_features() == 0
        assert not self.reconstruction.remove_track(track_id)

    def test_add_observation(self):
        """Test extending a track with another view"""
        track_id = self.reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])

        assert self.reconstruction.add_observation(2, track_id, (5.0, 6.0))
        assert not self.reconstruction.add_observation(2, track_id, (7.0, 8.0))
        assert self.reconstruction.track(track_id).num_views() == 3

    def test_set_point(self):
        """Test Euclidean and homogeneous point assignment"""
        track_id = self.reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])
        track = self.reconstruction.track(track_id)

        track.set_point([2.0, 4.0, 6.0, 2.0])
        np.testing.assert_allclose(track.euclidean_point(), [1.0, 2.0, 3.0])
        track.set_point([1.0, 1.0, 1.0])
        np.testing.assert_allclose(track.point, [1.0, 1.0, 1.0, 1.0])


class TestCopies:
    """Test deep copies and sub-reconstructions"""

    def test_copy_is_independent(self):
        """Test that modifying a copy does not affect the original"""
        reconstruction = Reconstruction()
        reconstruction.add_view("a.jpg")
        reconstruction.add_view("b.jpg")
        reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])

        copy = reconstruction.copy()
        copy.remove_view(0)
        copy.view(1).estimated = True

        assert reconstruction.num_views() == 2
        assert not reconstruction.view(1).estimated
        assert reconstruction.track(0).view_ids == {0, 1}

    def test_sub_reconstruction(self):
        """Test that a sub-reconstruction keeps ids and observed tracks only"""
        reconstruction = Reconstruction()
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            reconstruction.add_view(name)
        t0 = reconstruction.add_track([(0, (1.0, 2.0)), (1, (3.0, 4.0))])
        t1 = reconstruction.add_track([(2, (1.0, 2.0)), (1, (5.0, 6.0))])

        sub = reconstruction.get_sub_reconstruction([0])
        assert sub.view_ids() == [0]
        assert sub.track_ids() == [t0]
        assert t1 in reconstruction.track_ids()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
