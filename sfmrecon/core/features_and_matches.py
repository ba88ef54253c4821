"""
Feature extraction / matching collaborators of the reconstruction builder

The builder only relies on two contracts: a store holding camera intrinsics
priors and verified image pair matches, and an extractor/matcher that fills
that store. An in-memory store and an OpenCV SIFT implementation are
provided.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from tqdm import tqdm

from .camera_intrinsics_prior import CameraIntrinsicsPrior
from .geometric_verification import GeometricVerification, GeometricVerificationOptions
from .types import ImagePairMatch

logger = logging.getLogger(__name__)


class FeaturesAndMatchesDatabase(ABC):
    """Store for camera intrinsics priors and verified image pair matches"""

    @abstractmethod
    def num_matches(self) -> int:
        ...

    @abstractmethod
    def image_names_of_camera_intrinsics_priors(self) -> List[str]:
        ...

    @abstractmethod
    def get_camera_intrinsics_prior(self, image_name: str) -> CameraIntrinsicsPrior:
        ...

    @abstractmethod
    def put_camera_intrinsics_prior(self, image_name: str, prior: CameraIntrinsicsPrior) -> None:
        ...

    @abstractmethod
    def image_names_of_matches(self) -> List[Tuple[str, str]]:
        ...

    @abstractmethod
    def get_image_pair_match(self, image1: str, image2: str) -> ImagePairMatch:
        ...

    @abstractmethod
    def put_image_pair_match(self, image1: str, image2: str, match: ImagePairMatch) -> None:
        ...


class InMemoryFeaturesAndMatchesDatabase(FeaturesAndMatchesDatabase):
    """Dictionary-backed store"""

    def __init__(self):
        self._priors: Dict[str, CameraIntrinsicsPrior] = {}
        self._matches: Dict[Tuple[str, str], ImagePairMatch] = {}

    def num_matches(self) -> int:
        return len(self._matches)

    def image_names_of_camera_intrinsics_priors(self) -> List[str]:
        return list(self._priors.keys())

    def get_camera_intrinsics_prior(self, image_name: str) -> CameraIntrinsicsPrior:
        """Missing images get an empty prior"""
        return self._priors.get(image_name, CameraIntrinsicsPrior())

    def put_camera_intrinsics_prior(self, image_name: str, prior: CameraIntrinsicsPrior) -> None:
        self._priors[image_name] = prior

    def image_names_of_matches(self) -> List[Tuple[str, str]]:
        return list(self._matches.keys())

    def get_image_pair_match(self, image1: str, image2: str) -> ImagePairMatch:
        return self._matches[(image1, image2)]

    def put_image_pair_match(self, image1: str, image2: str, match: ImagePairMatch) -> None:
        self._matches[(image1, image2)] = match


class FeatureExtractorAndMatcher(ABC):
    """Extracts features of the added images and writes verified matches to a database"""

    @abstractmethod
    def add_image(self, image_path: str,
                  camera_intrinsics_prior: Optional[CameraIntrinsicsPrior] = None) -> bool:
        ...

    @abstractmethod
    def extract_and_match_features(self) -> bool:
        """Runs to completion; results are available in the database afterwards"""


@dataclass
class SiftMatcherOptions:
    """Configuration for the OpenCV SIFT extractor/matcher"""

    max_keypoints: int = 4096
    max_image_size: int = 1600
    ratio_thresh: float = 0.8

    def __post_init__(self):
        if self.max_keypoints <= 0:
            raise ValueError(f"max_keypoints must be > 0, got {self.max_keypoints}")
        if not 0.0 < self.ratio_thresh <= 1.0:
            raise ValueError(f"ratio_thresh must be in (0, 1], got {self.ratio_thresh}")


class SiftFeatureExtractorAndMatcher(FeatureExtractorAndMatcher):
    """
    Exhaustive SIFT matching with Lowe's ratio test followed by geometric verification

    Images without a calibrated prior get their size filled in so a default
    focal length ratio can still be applied during verification.
    """

    def __init__(self, database: FeaturesAndMatchesDatabase,
                 options: Optional[SiftMatcherOptions] = None,
                 verification_options: Optional[GeometricVerificationOptions] = None):
        self.database = database
        self.options = options or SiftMatcherOptions()
        self.verification = GeometricVerification(verification_options)
        self.image_paths: Dict[str, str] = {}

    def add_image(self, image_path: str,
                  camera_intrinsics_prior: Optional[CameraIntrinsicsPrior] = None) -> bool:
        name = Path(image_path).name
        if name in self.image_paths:
            logger.warning(f"Image {name} was already added")
            return False
        self.image_paths[name] = str(image_path)
        if camera_intrinsics_prior is not None:
            self.database.put_camera_intrinsics_prior(name, camera_intrinsics_prior)
        return True

    def _load_image(self, path: str) -> Tuple[Optional[np.ndarray], float]:
        image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
        if image is None:
            return None, 1.0
        scale = 1.0
        if max(image.shape[:2]) > self.options.max_image_size:
            scale = self.options.max_image_size / max(image.shape[:2])
            new_size = (int(image.shape[1] * scale), int(image.shape[0] * scale))
            image = cv2.resize(image, new_size)
        return image, scale

    def _extract(self) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
        sift = cv2.SIFT_create(nfeatures=self.options.max_keypoints)
        features = {}
        for name, path in tqdm(sorted(self.image_paths.items()), desc="Extracting features",
                               disable=not logger.isEnabledFor(logging.INFO)):
            image, scale = self._load_image(path)
            if image is None:
                logger.warning(f"Could not read image {path}")
                continue

            prior = self.database.get_camera_intrinsics_prior(name)
            if not prior.image_width.is_set:
                prior.image_width.set(round(image.shape[1] / scale))
                prior.image_height.set(round(image.shape[0] / scale))
                self.database.put_camera_intrinsics_prior(name, prior)

            keypoints, descriptors = sift.detectAndCompute(image, None)
            if descriptors is None or len(keypoints) < 2:
                logger.debug(f"No features found in {name}")
                continue
            points = np.array([kp.pt for kp in keypoints], dtype=np.float64) / scale
            features[name] = (points, descriptors.astype(np.float32))
        return features

    def _match(self, desc1: np.ndarray, desc2: np.ndarray) -> np.ndarray:
        matcher = cv2.BFMatcher()
        knn_matches = matcher.knnMatch(desc1, desc2, k=2)
        good_matches = []
        for match_pair in knn_matches:
            if len(match_pair) == 2:
                m, n = match_pair
                if m.distance < self.options.ratio_thresh * n.distance:
                    good_matches.append([m.queryIdx, m.trainIdx])
        return np.array(good_matches) if good_matches else np.zeros((0, 2), dtype=int)

    def extract_and_match_features(self) -> bool:
        features = self._extract()
        if len(features) < 2:
            logger.warning(f"Only {len(features)} images have features; nothing to match")
            return False

        putative = {}
        names = sorted(features.keys())
        for name1, name2 in tqdm(list(combinations(names, 2)), desc="Matching pairs",
                                 disable=not logger.isEnabledFor(logging.INFO)):
            indices = self._match(features[name1][1], features[name2][1])
            if len(indices) == 0:
                continue
            putative[(name1, name2)] = (
                features[name1][0][indices[:, 0]],
                features[name2][0][indices[:, 1]],
            )

        priors = {
            name: self.database.get_camera_intrinsics_prior(name)
            for name in self.database.image_names_of_camera_intrinsics_priors()
        }
        verified = self.verification.verify_pairs(putative, priors)
        for (name1, name2), match in verified.items():
            self.database.put_image_pair_match(name1, name2, match)
        return True
