"""
    Constant velocity Kalman filter over bounding boxes in (cx, cy, a, h) form.
"""
import logging
from typing import Tuple

import numpy as np
import scipy.linalg

logger = logging.getLogger(__name__)

"""
Table for the 0.95 quantile of the chi-square distribution with N degrees of
freedom (contains values for N=1, ..., 9). Used as Mahalanobis gating threshold.
"""
chi2inv95 = {
    1: 3.8415,
    2: 5.9915,
    3: 7.8147,
    4: 9.4877,
    5: 11.070,
    6: 12.592,
    7: 14.067,
    8: 15.507,
    9: 16.919,
}

_MAX_JITTER_TRIES = 6


def _cho_factor(matrix: np.ndarray):
    """
    Cholesky factor of a covariance that is expected to be positive definite.

    A degenerate matrix is symmetrised and an increasing diagonal jitter is added
    until the factorisation succeeds.
    """
    try:
        return scipy.linalg.cho_factor(matrix, lower=True, check_finite=False)
    except np.linalg.LinAlgError:
        pass

    sym = 0.5 * (matrix + matrix.T)
    scale = max(float(np.abs(np.diag(sym)).max()), 1.0)
    jitter = 1e-9 * scale
    for _ in range(_MAX_JITTER_TRIES):
        try:
            factor = scipy.linalg.cho_factor(sym + jitter * np.eye(len(sym)), lower=True, check_finite=False)
            logger.warning("covariance not positive definite, regularised with jitter %.3g", jitter)
            return factor
        except np.linalg.LinAlgError:
            jitter *= 100.0

    # last resort: keep only the (clamped) diagonal
    diag = np.maximum(np.diag(sym), jitter)
    logger.warning("covariance could not be factorised, falling back to its diagonal")
    return scipy.linalg.cho_factor(np.diag(diag), lower=True, check_finite=False)


class KalmanFilter(object):
    """
    A simple Kalman filter for tracking bounding boxes in image space.

    The 8-dimensional state space

        x, y, a, h, vx, vy, va, vh

    contains the bounding box center position (x, y), aspect ratio a, height h,
    and their respective velocities.

    Object motion follows a constant velocity model. The bounding box location
    (x, y, a, h) is taken as direct observation of the state space (linear
    observation model). Process and measurement noise scale with the height.
    """

    def __init__(self):
        ndim, dt = 4, 1.

        self._motion_mat = np.eye(2 * ndim, 2 * ndim)
        for i in range(ndim):
            self._motion_mat[i, ndim + i] = dt
        self._update_mat = np.eye(ndim, 2 * ndim)

        self._std_weight_position = 1. / 20
        self._std_weight_velocity = 1. / 160

    def initiate(self, measurement: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Create track from an unassociated measurement (x, y, a, h).

        Unobserved velocities are initialised to 0 mean with a large variance.
        """
        mean_pos = np.asarray(measurement, dtype=float)
        mean_vel = np.zeros_like(mean_pos)
        mean = np.r_[mean_pos, mean_vel]

        h = mean_pos[3]
        std = [
            2 * self._std_weight_position * h,
            2 * self._std_weight_position * h,
            1e-2,
            2 * self._std_weight_position * h,
            10 * self._std_weight_velocity * h,
            10 * self._std_weight_velocity * h,
            1e-5,
            10 * self._std_weight_velocity * h]
        covariance = np.diag(np.square(std))
        return mean, covariance

    def _motion_cov(self, heights: np.ndarray) -> np.ndarray:
        std_pos = [
            self._std_weight_position * heights,
            self._std_weight_position * heights,
            1e-2 * np.ones_like(heights),
            self._std_weight_position * heights]
        std_vel = [
            self._std_weight_velocity * heights,
            self._std_weight_velocity * heights,
            1e-5 * np.ones_like(heights),
            self._std_weight_velocity * heights]
        return np.square(np.r_[std_pos, std_vel]).T

    def predict(self, mean: np.ndarray, covariance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Run Kalman filter prediction step."""
        motion_cov = np.diag(self._motion_cov(np.asarray([mean[3]], dtype=float))[0])

        mean = np.dot(self._motion_mat, mean)
        covariance = np.linalg.multi_dot((
            self._motion_mat, covariance, self._motion_mat.T)) + motion_cov

        return mean, covariance

    def project(self, mean: np.ndarray, covariance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Project state distribution to measurement space."""
        std = [
            self._std_weight_position * mean[3],
            self._std_weight_position * mean[3],
            1e-1,
            self._std_weight_position * mean[3]]
        innovation_cov = np.diag(np.square(std))

        mean = np.dot(self._update_mat, mean)
        covariance = np.linalg.multi_dot((
            self._update_mat, covariance, self._update_mat.T))
        return mean, covariance + innovation_cov

    def multi_predict(self, mean: np.ndarray, covariance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Run Kalman filter prediction step (vectorized version).

        mean is Nx8, covariance Nx8x8. Every row is predicted independently and gives
        the same result as ``predict`` on that row alone.
        """
        mean = np.asarray(mean, dtype=float)
        covariance = np.asarray(covariance, dtype=float)
        if len(mean) == 0:
            return mean.reshape((0, 8)), covariance.reshape((0, 8, 8))

        sqr = self._motion_cov(mean[:, 3])
        motion_cov = np.asarray([np.diag(row) for row in sqr])

        mean = np.dot(mean, self._motion_mat.T)
        left = np.dot(self._motion_mat, covariance).transpose((1, 0, 2))
        covariance = np.dot(left, self._motion_mat.T) + motion_cov

        return mean, covariance

    def update(self, mean: np.ndarray, covariance: np.ndarray,
               measurement: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Run Kalman filter correction step with a (x, y, a, h) measurement."""
        projected_mean, projected_cov = self.project(mean, covariance)

        chol_factor, lower = _cho_factor(projected_cov)
        kalman_gain = scipy.linalg.cho_solve(
            (chol_factor, lower), np.dot(covariance, self._update_mat.T).T,
            check_finite=False).T
        innovation = np.asarray(measurement, dtype=float) - projected_mean

        new_mean = mean + np.dot(innovation, kalman_gain.T)
        new_covariance = covariance - np.linalg.multi_dot((
            kalman_gain, projected_cov, kalman_gain.T))
        new_covariance = 0.5 * (new_covariance + new_covariance.T)
        return new_mean, new_covariance

    def gating_distance(self, mean: np.ndarray, covariance: np.ndarray, measurements: np.ndarray,
                        only_position: bool = False) -> np.ndarray:
        """
        Squared Mahalanobis distance between the state distribution and each row
        of ``measurements`` (Nx4, xyah). With ``only_position`` only the box center
        is compared, and the threshold to use is ``chi2inv95[2]`` instead of
        ``chi2inv95[4]``.
        """
        mean, covariance = self.project(mean, covariance)
        measurements = np.asarray(measurements, dtype=float).reshape((-1, 4))
        if only_position:
            mean, covariance = mean[:2], covariance[:2, :2]
            measurements = measurements[:, :2]

        cholesky_factor, _ = _cho_factor(covariance)
        cholesky_factor = np.tril(cholesky_factor)
        d = measurements - mean
        z = scipy.linalg.solve_triangular(
            cholesky_factor, d.T, lower=True, check_finite=False,
            overwrite_b=True)
        squared_maha = np.sum(z * z, axis=0)
        return squared_maha
