"""
Reconstruction container

Holds views and tracks in id-indexed arenas. Relationships are kept as id
sets on both sides (Track.view_ids and View.features) instead of object
references. Ids come from monotonically increasing counters and are never
reused after removal.
"""

import copy
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .camera_intrinsics_prior import CameraIntrinsicsPrior
from .track import Track
from .types import (
    CameraIntrinsicsGroupId,
    Feature,
    INVALID_CAMERA_INTRINSICS_GROUP_ID,
    INVALID_TRACK_ID,
    INVALID_VIEW_ID,
    TrackId,
    ViewId,
    make_feature,
)
from .view import View

logger = logging.getLogger(__name__)


class Reconstruction:
    """Views, tracks and shared-calibration groups of a (partial) reconstruction"""

    def __init__(self):
        self.views: Dict[ViewId, View] = {}
        self.tracks: Dict[TrackId, Track] = {}
        self.view_name_to_id: Dict[str, ViewId] = {}

        self.view_id_to_group_id: Dict[ViewId, CameraIntrinsicsGroupId] = {}
        self.group_id_to_view_ids: Dict[CameraIntrinsicsGroupId, Set[ViewId]] = {}

        self._next_view_id: ViewId = 0
        self._next_track_id: TrackId = 0
        self._next_group_id: CameraIntrinsicsGroupId = 0

    # ------------------------------------------------------------------ views

    def add_view(self, name: str,
                 camera_intrinsics_group_id: CameraIntrinsicsGroupId = INVALID_CAMERA_INTRINSICS_GROUP_ID,
                 camera_intrinsics_prior: Optional[CameraIntrinsicsPrior] = None) -> ViewId:
        """
        Add a view with a unique name

        Returns:
            The new view id, or INVALID_VIEW_ID if the name is already taken
        """
        if name in self.view_name_to_id:
            logger.debug(f"Could not add view {name}: a view with that name already exists")
            return INVALID_VIEW_ID

        view_id = self._next_view_id
        self._next_view_id += 1

        view = View(name=name)
        if camera_intrinsics_prior is not None:
            view.camera_intrinsics_prior = copy.deepcopy(camera_intrinsics_prior)
        self.views[view_id] = view
        self.view_name_to_id[name] = view_id

        if camera_intrinsics_group_id == INVALID_CAMERA_INTRINSICS_GROUP_ID:
            camera_intrinsics_group_id = self._new_group_id()
        else:
            self._next_group_id = max(self._next_group_id, camera_intrinsics_group_id + 1)
        self.view_id_to_group_id[view_id] = camera_intrinsics_group_id
        self.group_id_to_view_ids.setdefault(camera_intrinsics_group_id, set()).add(view_id)
        return view_id

    def remove_view(self, view_id: ViewId) -> bool:
        """
        Remove a view and detach it from every track observing it

        Tracks are kept even if they end up with fewer than two observations.
        """
        view = self.views.get(view_id)
        if view is None:
            return False

        for track_id in view.track_ids():
            track = self.tracks.get(track_id)
            if track is None:
                logger.warning(f"View {view_id} references missing track {track_id}")
                continue
            track.remove_view(view_id)

        group_id = self.view_id_to_group_id.pop(view_id, None)
        if group_id is not None:
            members = self.group_id_to_view_ids.get(group_id)
            if members is not None:
                members.discard(view_id)
                if not members:
                    del self.group_id_to_view_ids[group_id]

        del self.view_name_to_id[view.name]
        del self.views[view_id]
        return True

    def view(self, view_id: ViewId) -> Optional[View]:
        return self.views.get(view_id)

    def view_id_from_name(self, name: str) -> ViewId:
        return self.view_name_to_id.get(name, INVALID_VIEW_ID)

    def view_ids(self) -> List[ViewId]:
        return list(self.views.keys())

    def num_views(self) -> int:
        return len(self.views)

    # ------------------------------------------------------------- intrinsics

    def _new_group_id(self) -> CameraIntrinsicsGroupId:
        group_id = self._next_group_id
        self._next_group_id += 1
        return group_id

    def camera_intrinsics_group_id_from_view_id(self, view_id: ViewId) -> CameraIntrinsicsGroupId:
        return self.view_id_to_group_id.get(view_id, INVALID_CAMERA_INTRINSICS_GROUP_ID)

    def view_ids_in_camera_intrinsics_group(self, group_id: CameraIntrinsicsGroupId) -> Set[ViewId]:
        return set(self.group_id_to_view_ids.get(group_id, set()))

    def camera_intrinsics_group_ids(self) -> Set[CameraIntrinsicsGroupId]:
        return set(self.group_id_to_view_ids.keys())

    def num_camera_intrinsics_groups(self) -> int:
        return len(self.group_id_to_view_ids)

    # ----------------------------------------------------------------- tracks

    def add_track(self, observations: Sequence[Tuple[ViewId, Feature]]) -> TrackId:
        """
        Add a track observed by at least two distinct views

        Returns:
            The new track id, or INVALID_TRACK_ID if the observations are invalid
        """
        if len(observations) < 2:
            logger.debug(f"Tracks must have at least 2 observations, got {len(observations)}")
            return INVALID_TRACK_ID

        view_ids = [view_id for view_id, _ in observations]
        if len(set(view_ids)) != len(view_ids):
            logger.debug("Cannot add a track with more than one observation in a single view")
            return INVALID_TRACK_ID
        for view_id in view_ids:
            if view_id not in self.views:
                logger.debug(f"Cannot add a track observed by unknown view {view_id}")
                return INVALID_TRACK_ID

        track_id = self._next_track_id
        self._next_track_id += 1

        track = Track()
        for view_id, feature in observations:
            track.add_view(view_id)
            self.views[view_id].add_feature(track_id, make_feature(feature))
        self.tracks[track_id] = track
        return track_id

    def add_observation(self, view_id: ViewId, track_id: TrackId, feature: Feature) -> bool:
        view = self.views.get(view_id)
        track = self.tracks.get(track_id)
        if view is None or track is None:
            return False
        if view_id in track.view_ids:
            logger.debug(f"Track {track_id} already has an observation in view {view_id}")
            return False
        track.add_view(view_id)
        view.add_feature(track_id, make_feature(feature))
        return True

    def remove_track(self, track_id: TrackId) -> bool:
        track = self.tracks.get(track_id)
        if track is None:
            return False
        for view_id in track.view_ids:
            view = self.views.get(view_id)
            if view is not None:
                view.remove_feature(track_id)
        del self.tracks[track_id]
        return True

    def track(self, track_id: TrackId) -> Optional[Track]:
        return self.tracks.get(track_id)

    def track_ids(self) -> List[TrackId]:
        return list(self.tracks.keys())

    def num_tracks(self) -> int:
        return len(self.tracks)

    # ----------------------------------------------------------------- copies

    def copy(self) -> "Reconstruction":
        """Independent deep copy"""
        return copy.deepcopy(self)

    def get_sub_reconstruction(self, view_ids: Iterable[ViewId]) -> "Reconstruction":
        """
        Copy restricted to the given views and the tracks they observe

        Ids are preserved so the sub-reconstruction can be related back to
        this one.
        """
        keep_views = {view_id for view_id in view_ids if view_id in self.views}
        keep_tracks = set()
        for view_id in keep_views:
            keep_tracks.update(self.views[view_id].track_ids())

        sub = self.copy()
        for view_id in self.view_ids():
            if view_id not in keep_views:
                sub.remove_view(view_id)
        for track_id in self.track_ids():
            if track_id not in keep_tracks:
                sub.remove_track(track_id)
        return sub

    def __repr__(self) -> str:
        return f"Reconstruction(views={self.num_views()}, tracks={self.num_tracks()})"
