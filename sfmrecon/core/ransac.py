"""
Sample consensus estimation framework

A model is described by an Estimator (minimal solver + error function) and
fitted robustly by SampleConsensusEstimator. Iterations are bounded
adaptively from the best inlier ratio found so far:

    N = log(failure_probability) / log(1 - w^s)

Sampling uses a numpy Generator owned by the parameters object, so two runs
with the same seed and data produce the same model and inliers. A generator
must not be shared between threads; spawn one per invocation instead.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

import cv2
import numpy as np

logger = logging.getLogger(__name__)

Datum = TypeVar("Datum")
Model = TypeVar("Model")


class Estimator(ABC, Generic[Datum, Model]):
    """Minimal solver and error function of a model type"""

    @abstractmethod
    def sample_size(self) -> int:
        """Number of data points needed to fit a model"""

    @abstractmethod
    def estimate_model(self, data: Sequence[Datum]) -> List[Model]:
        """
        Fit models to a minimal sample

        Returns:
            Zero or more candidate models. An empty list marks a degenerate
            sample (e.g. duplicated points).
        """

    @abstractmethod
    def error(self, datum: Datum, model: Model) -> float:
        """Squared residual of a datum under a model"""

    def residuals(self, data: Sequence[Datum], model: Model) -> np.ndarray:
        return np.array([self.error(datum, model) for datum in data], dtype=np.float64)


class RansacType(Enum):
    """Available sample consensus variants"""
    RANSAC = "ransac"
    LMED = "lmed"


@dataclass
class RansacParameters:
    """Parameters shared by all sample consensus variants"""

    # Residual threshold (same unit as the estimator's error, not squared)
    error_thresh: float = 1.0

    # Probability of never drawing an all-inlier sample (1 - confidence)
    failure_probability: float = 0.01

    # Minimum ratio of inliers for a model to be accepted
    min_inlier_ratio: float = 0.0

    min_iterations: int = 100
    max_iterations: int = 10000

    # Score hypotheses by truncated squared error instead of inlier count
    use_mle: bool = False

    # Random source; created from `seed` when not given
    seed: Optional[int] = None
    rng: Optional[np.random.Generator] = field(default=None, repr=False)

    def __post_init__(self):
        if self.error_thresh <= 0:
            raise ValueError(f"error_thresh must be positive, got {self.error_thresh}")
        if not (0.0 < self.failure_probability < 1.0):
            raise ValueError(f"failure_probability must be in (0, 1), got {self.failure_probability}")
        if not (0.0 <= self.min_inlier_ratio <= 1.0):
            raise ValueError(f"min_inlier_ratio must be in [0, 1], got {self.min_inlier_ratio}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.min_iterations > self.max_iterations:
            raise ValueError(
                f"min_iterations ({self.min_iterations}) exceeds max_iterations ({self.max_iterations})"
            )
        if self.rng is None:
            self.rng = np.random.default_rng(self.seed)


@dataclass
class RansacSummary:
    """Outcome of a robust estimation"""

    success: bool = False
    inliers: List[int] = field(default_factory=list)
    num_input_data_points: int = 0
    num_iterations: int = 0
    confidence: float = 0.0


class QualityMeasurement(ABC):
    """Cost of a hypothesis given its squared residuals (lower is better)"""

    def __init__(self, squared_error_thresh: float):
        self.squared_error_thresh = squared_error_thresh

    @abstractmethod
    def compute_cost(self, residuals: np.ndarray) -> float:
        pass


class InlierSupport(QualityMeasurement):
    """Classic RANSAC: number of outliers"""

    def compute_cost(self, residuals: np.ndarray) -> float:
        return float(np.count_nonzero(residuals >= self.squared_error_thresh))


class TruncatedSquaredError(QualityMeasurement):
    """Maximum-likelihood style scoring: inliers pay their residual, outliers the threshold"""

    def compute_cost(self, residuals: np.ndarray) -> float:
        return float(np.sum(np.minimum(residuals, self.squared_error_thresh)))


class LeastMedian(QualityMeasurement):
    """Least median of squares"""

    def compute_cost(self, residuals: np.ndarray) -> float:
        return float(np.median(residuals))


class SampleConsensusEstimator(Generic[Datum, Model]):
    """
    Generic hypothesize-and-verify loop

    Example:
        params = RansacParameters(error_thresh=0.01, seed=42)
        ransac = SampleConsensusEstimator(params, MyEstimator())
        model, summary = ransac.estimate(data)
    """

    def __init__(self, params: RansacParameters, estimator: Estimator,
                 ransac_type: RansacType = RansacType.RANSAC):
        self.params = params
        self.estimator = estimator
        self.ransac_type = ransac_type
        self.squared_error_thresh = params.error_thresh ** 2
        self.quality = self._make_quality_measurement()

    def _make_quality_measurement(self) -> QualityMeasurement:
        if self.ransac_type == RansacType.LMED:
            return LeastMedian(self.squared_error_thresh)
        if self.params.use_mle:
            return TruncatedSquaredError(self.squared_error_thresh)
        return InlierSupport(self.squared_error_thresh)

    def compute_max_iterations(self, inlier_ratio: float) -> int:
        """Iterations needed to draw an all-inlier sample with the target confidence"""
        sample_size = self.estimator.sample_size()
        min_iterations = self.params.min_iterations
        max_iterations = self.params.max_iterations

        if inlier_ratio <= 0.0:
            return max_iterations
        if inlier_ratio >= 1.0:
            return min_iterations

        prob_all_inliers = inlier_ratio ** sample_size
        log_prob_failure = math.log1p(-prob_all_inliers)
        if log_prob_failure >= 0.0:
            return max_iterations

        num_iterations = math.ceil(math.log(self.params.failure_probability) / log_prob_failure)
        return int(min(max(num_iterations, min_iterations), max_iterations))

    def _draw_sample(self, data: Sequence[Datum]) -> List[Datum]:
        indices = self.params.rng.choice(len(data), size=self.estimator.sample_size(), replace=False)
        return [data[i] for i in indices]

    def _inliers(self, residuals: np.ndarray) -> List[int]:
        return np.flatnonzero(residuals < self.squared_error_thresh).tolist()

    def _median_inliers(self, residuals: np.ndarray, median: float, sample_size: int) -> List[int]:
        """Inliers within 2.5 robust standard deviations estimated from the best median"""
        num_data = len(residuals)
        correction = 1.0 + 5.0 / max(num_data - sample_size, 1)
        sigma = 1.4826 * correction * math.sqrt(max(median, 0.0))
        return np.flatnonzero(residuals <= max((2.5 * sigma) ** 2, np.finfo(np.float64).eps)).tolist()

    def estimate(self, data: Sequence[Datum]) -> Tuple[Optional[Model], RansacSummary]:
        """
        Robustly fit a model

        Returns:
            (model, summary). On failure the model is None and the summary has
            success=False and no inliers.
        """
        num_data = len(data)
        sample_size = self.estimator.sample_size()
        summary = RansacSummary(num_input_data_points=num_data)

        if num_data < sample_size:
            logger.debug(f"Not enough data for estimation: {num_data} < {sample_size}")
            return None, summary

        best_model = None
        best_cost = math.inf
        max_iterations = self.params.max_iterations
        iterations = 0

        while iterations < max_iterations:
            iterations += 1
            sample = self._draw_sample(data)
            try:
                models = self.estimator.estimate_model(sample)
            except (np.linalg.LinAlgError, cv2.error) as e:
                logger.debug(f"Minimal solver failed on iteration {iterations}: {e}")
                continue

            for model in models:
                residuals = self.estimator.residuals(data, model)
                cost = self.quality.compute_cost(residuals)
                if cost < best_cost:
                    best_cost = cost
                    best_model = model
                    inlier_ratio = len(self._inliers(residuals)) / num_data
                    max_iterations = self.compute_max_iterations(inlier_ratio)

        summary.num_iterations = iterations
        if best_model is None:
            logger.debug(f"No model could be estimated in {iterations} iterations")
            return None, summary

        residuals = self.estimator.residuals(data, best_model)
        if self.ransac_type == RansacType.LMED:
            inliers = self._median_inliers(residuals, best_cost, sample_size)
        else:
            inliers = self._inliers(residuals)
        inlier_ratio = len(inliers) / num_data
        if len(inliers) < sample_size or inlier_ratio < self.params.min_inlier_ratio:
            logger.debug(
                f"Best model has insufficient support: {len(inliers)}/{num_data} inliers"
            )
            return None, summary

        summary.success = True
        summary.inliers = inliers
        summary.confidence = 1.0 - (1.0 - inlier_ratio ** sample_size) ** iterations
        return best_model, summary


def create_estimator(ransac_type: RansacType, params: RansacParameters,
                     estimator: Estimator) -> SampleConsensusEstimator:
    """Build the sample consensus estimator of the requested variant"""
    if not isinstance(ransac_type, RansacType):
        ransac_type = RansacType(ransac_type)
    return SampleConsensusEstimator(params, estimator, ransac_type)
