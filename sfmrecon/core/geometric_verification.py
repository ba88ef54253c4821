"""
Geometric verification module
Estimates the relative pose of calibrated image pairs and keeps the inlier matches
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .camera import Camera
from .camera_intrinsics_prior import CameraIntrinsicsPrior
from .estimators import estimate_relative_pose
from .ransac import RansacParameters, RansacType
from .twoview_info import twoview_info_from_pose
from .types import FeatureCorrespondence, ImagePairMatch

logger = logging.getLogger(__name__)

ImagePair = Tuple[str, str]


@dataclass
class GeometricVerificationOptions:
    """Configuration for two-view geometric verification"""

    num_threads: int = 1
    seed: Optional[int] = None

    ransac_type: RansacType = RansacType.RANSAC
    # Sampson error threshold in pixels
    threshold: float = 2.0
    failure_probability: float = 0.001
    min_iterations: int = 10
    max_iterations: int = 2000
    use_mle: bool = True

    min_num_inlier_matches: int = 30

    # Used when a prior has an image size but no focal length
    default_focal_length_ratio: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.ransac_type, str):
            self.ransac_type = RansacType(self.ransac_type)
        if self.num_threads <= 0:
            raise ValueError(f"num_threads must be > 0, got {self.num_threads}")
        if self.threshold <= 0:
            raise ValueError(f"threshold must be > 0, got {self.threshold}")
        if self.min_num_inlier_matches < 0:
            raise ValueError(f"min_num_inlier_matches must be >= 0, got {self.min_num_inlier_matches}")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "GeometricVerificationOptions":
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["ransac_type"] = self.ransac_type.value
        return data


class GeometricVerification:
    """
    Two-view geometric verification of putative matches

    Every pair is verified independently, so pairs are distributed over a
    thread pool. Each pair draws from its own generator spawned from the
    configured seed, which keeps the result independent of scheduling.
    """

    def __init__(self, options: Optional[GeometricVerificationOptions] = None):
        self.options = options or GeometricVerificationOptions()
        logger.info(
            f"Geometric verification initialized with method: {self.options.ransac_type.value}"
        )

    def _camera_from_prior(self, prior: Optional[CameraIntrinsicsPrior]) -> Optional[Camera]:
        if prior is None:
            return None
        camera = Camera()
        if not camera.set_from_prior(prior, self.options.default_focal_length_ratio):
            return None
        return camera

    def verify_pair(self, image1: str, image2: str,
                    points1: np.ndarray, points2: np.ndarray,
                    prior1: Optional[CameraIntrinsicsPrior],
                    prior2: Optional[CameraIntrinsicsPrior],
                    rng: Optional[np.random.Generator] = None) -> Optional[ImagePairMatch]:
        """
        Verify the putative matches of one image pair

        Args:
            points1, points2: (N, 2) pixel coordinates of matched features

        Returns:
            The verified match with its two-view geometry, or None
        """
        points1 = np.asarray(points1, dtype=np.float64).reshape(-1, 2)
        points2 = np.asarray(points2, dtype=np.float64).reshape(-1, 2)
        if len(points1) != len(points2):
            raise ValueError(
                f"Mismatched point counts for ({image1}, {image2}): {len(points1)} vs {len(points2)}"
            )

        camera1 = self._camera_from_prior(prior1)
        camera2 = self._camera_from_prior(prior2)
        if camera1 is None or camera2 is None:
            logger.debug(f"Skipping ({image1}, {image2}): missing focal length")
            return None

        if len(points1) < max(8, self.options.min_num_inlier_matches):
            logger.debug(f"Not enough matches for ({image1}, {image2}): {len(points1)}")
            return None

        normalized1 = camera1.pixel_to_normalized(points1)
        normalized2 = camera2.pixel_to_normalized(points2)
        correspondences = [
            FeatureCorrespondence(tuple(p1), tuple(p2))
            for p1, p2 in zip(normalized1, normalized2)
        ]

        mean_focal = np.sqrt(camera1.focal_length * camera2.focal_length)
        params = RansacParameters(
            error_thresh=self.options.threshold / mean_focal,
            failure_probability=self.options.failure_probability,
            min_iterations=self.options.min_iterations,
            max_iterations=self.options.max_iterations,
            use_mle=self.options.use_mle,
            rng=rng if rng is not None else np.random.default_rng(self.options.seed),
        )
        pose, summary = estimate_relative_pose(params, self.options.ransac_type, correspondences)
        if pose is None:
            logger.debug(f"Relative pose estimation failed for ({image1}, {image2})")
            return None

        inliers = summary.inliers
        if len(inliers) < self.options.min_num_inlier_matches:
            logger.debug(
                f"Too few inliers for ({image1}, {image2}): {len(inliers)}/{len(points1)}"
            )
            return None

        info = twoview_info_from_pose(
            pose.rotation,
            pose.translation,
            focal_length_1=camera1.focal_length,
            focal_length_2=camera2.focal_length,
            num_verified_matches=len(inliers),
        )
        return ImagePairMatch.from_points(
            image1, image2, points1[inliers], points2[inliers], twoview_info=info
        )

    def verify_pairs(self, putative_matches: Dict[ImagePair, Tuple[np.ndarray, np.ndarray]],
                     priors: Dict[str, CameraIntrinsicsPrior]) -> Dict[ImagePair, ImagePairMatch]:
        """
        Verify many image pairs in parallel

        Args:
            putative_matches: (image1, image2) -> (points1, points2)
            priors: image name -> camera intrinsics prior

        Returns:
            Verified matches keyed like the input, failed pairs omitted
        """
        start_time = time.time()
        pairs: List[ImagePair] = sorted(putative_matches.keys())
        seeds = np.random.SeedSequence(self.options.seed).spawn(len(pairs))

        verified: Dict[ImagePair, ImagePairMatch] = {}
        with ThreadPoolExecutor(max_workers=self.options.num_threads) as executor:
            futures = {}
            for pair, seed in zip(pairs, seeds):
                points1, points2 = putative_matches[pair]
                future = executor.submit(
                    self.verify_pair, pair[0], pair[1], points1, points2,
                    priors.get(pair[0]), priors.get(pair[1]), np.random.default_rng(seed),
                )
                futures[future] = pair

            for future in tqdm(as_completed(futures), total=len(futures),
                               desc="Verifying pairs", leave=False,
                               disable=not logger.isEnabledFor(logging.INFO)):
                pair = futures[future]
                match = future.result()
                if match is not None:
                    verified[pair] = match

        logger.info(
            f"Geometric verification: {len(verified)}/{len(pairs)} pairs verified "
            f"in {time.time() - start_time:.2f}s"
        )
        return verified
