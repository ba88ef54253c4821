"""
I/O utilities for saving reconstructions (JSON) and verified matches (H5)
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

import h5py
import numpy as np

from ..core.camera_intrinsics_prior import CameraIntrinsicsPrior
from ..core.features_and_matches import FeaturesAndMatchesDatabase, InMemoryFeaturesAndMatchesDatabase
from ..core.reconstruction import Reconstruction
from ..core.twoview_info import TwoViewInfo
from ..core.types import ImagePairMatch, make_feature

PathLike = Union[str, Path]


def convert_to_json_serializable(obj):
    """Convert numpy arrays to lists for JSON serialization"""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: convert_to_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [convert_to_json_serializable(item) for item in obj]
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    return obj


def save_reconstruction_info(filepath: PathLike, reconstruction: Reconstruction):
    """Save a reconstruction in JSON format"""
    views = {}
    for view_id in reconstruction.view_ids():
        view = reconstruction.view(view_id)
        camera = view.camera
        views[str(view_id)] = {
            'name': view.name,
            'estimated': view.estimated,
            'camera_intrinsics_group_id': reconstruction.camera_intrinsics_group_id_from_view_id(view_id),
            'camera_intrinsics_prior': view.camera_intrinsics_prior.to_dict(),
            'camera': {
                'orientation': camera.orientation,
                'position': camera.position,
                'focal_length': camera.focal_length,
                'principal_point': camera.principal_point,
                'image_width': camera.image_width,
                'image_height': camera.image_height,
            },
            'features': {str(track_id): feature for track_id, feature in view.features.items()},
        }

    tracks = {}
    for track_id in reconstruction.track_ids():
        track = reconstruction.track(track_id)
        tracks[str(track_id)] = {
            'point': track.point,
            'color': track.color,
            'estimated': track.estimated,
        }

    info = {
        'num_views': reconstruction.num_views(),
        'num_tracks': reconstruction.num_tracks(),
        'views': convert_to_json_serializable(views),
        'tracks': convert_to_json_serializable(tracks),
    }

    with open(filepath, 'w') as f:
        json.dump(info, f, indent=2)


def load_reconstruction(filepath: PathLike) -> Reconstruction:
    """
    Load a reconstruction saved with save_reconstruction_info

    View and track ids are renumbered in file order.
    """
    with open(filepath, 'r') as f:
        info = json.load(f)

    reconstruction = Reconstruction()
    view_ids = {}
    for old_id, view_data in sorted(info['views'].items(), key=lambda item: int(item[0])):
        view_id = reconstruction.add_view(
            view_data['name'],
            view_data['camera_intrinsics_group_id'],
            CameraIntrinsicsPrior.from_dict(view_data['camera_intrinsics_prior']),
        )
        view = reconstruction.view(view_id)
        view.estimated = view_data['estimated']
        camera_data = view_data['camera']
        view.camera.orientation = np.array(camera_data['orientation'], dtype=np.float64)
        view.camera.position = np.array(camera_data['position'], dtype=np.float64)
        view.camera.focal_length = camera_data['focal_length']
        view.camera.principal_point = np.array(camera_data['principal_point'], dtype=np.float64)
        view.camera.image_width = camera_data['image_width']
        view.camera.image_height = camera_data['image_height']
        view_ids[old_id] = view_id

    observations: Dict[str, list] = {}
    for old_view_id, view_data in info['views'].items():
        for old_track_id, feature in view_data['features'].items():
            observations.setdefault(old_track_id, []).append(
                (view_ids[old_view_id], make_feature(feature))
            )

    for old_track_id, track_data in sorted(info['tracks'].items(), key=lambda item: int(item[0])):
        track_id = reconstruction.add_track(observations.get(old_track_id, []))
        if track_id < 0:
            continue
        track = reconstruction.track(track_id)
        track.set_point(track_data['point'])
        track.color = np.array(track_data['color'], dtype=np.uint8)
        track.estimated = track_data['estimated']

    return reconstruction


def save_matches(database: FeaturesAndMatchesDatabase, filepath: PathLike):
    """Save camera priors and verified matches in H5 format"""
    with h5py.File(filepath, 'w') as f:
        priors_grp = f.create_group('camera_intrinsics_priors')
        for image_name in database.image_names_of_camera_intrinsics_priors():
            grp = priors_grp.create_group(image_name)
            for key, value in database.get_camera_intrinsics_prior(image_name).to_dict().items():
                grp.attrs[key] = np.asarray(value, dtype=np.float64)

        matches_grp = f.create_group('matches')
        for i, (image1, image2) in enumerate(database.image_names_of_matches()):
            match = database.get_image_pair_match(image1, image2)
            grp = matches_grp.create_group(f'match_{i}')
            grp.attrs['img1'] = image1
            grp.attrs['img2'] = image2

            points1, points2 = match.points()
            grp.create_dataset('points1', data=points1)
            grp.create_dataset('points2', data=points2)
            for key, value in match.twoview_info.to_dict().items():
                grp.attrs[key] = value


def load_matches(filepath: PathLike) -> InMemoryFeaturesAndMatchesDatabase:
    """Load camera priors and verified matches from H5 format"""
    database = InMemoryFeaturesAndMatchesDatabase()
    with h5py.File(filepath, 'r') as f:
        for image_name, grp in f['camera_intrinsics_priors'].items():
            prior_data: Dict[str, Any] = {key: list(value) for key, value in grp.attrs.items()}
            database.put_camera_intrinsics_prior(image_name, CameraIntrinsicsPrior.from_dict(prior_data))

        for group_name in f['matches'].keys():
            grp = f['matches'][group_name]
            image1 = str(grp.attrs['img1'])
            image2 = str(grp.attrs['img2'])
            info_data = {
                key: value for key, value in grp.attrs.items()
                if key not in ('img1', 'img2')
            }
            match = ImagePairMatch.from_points(
                image1, image2, grp['points1'][:], grp['points2'][:],
                twoview_info=TwoViewInfo.from_dict(info_data),
            )
            database.put_image_pair_match(image1, image2, match)

    return database
