"""
    Global motion compensation: estimates the 2x3 affine warp that maps the
    previous frame onto the current one, used to move predicted tracks before
    they are compared with the current detections.
"""
import logging
from typing import Optional, Protocol

import cv2
import numpy as np

from .default_settings import GMCSettings

logger = logging.getLogger(__name__)


class MotionCompensator(Protocol):
    def estimate_warp(self, frame: Optional[np.ndarray]) -> np.ndarray:
        ...


class GMC(object):
    """
    Camera motion estimator backed by OpenCV.

    methods:
        'ecc'           - euclidean ECC image alignment
        'sparseOptFlow' - corners tracked with pyramidal Lucas-Kanade, partial affine fitted with RANSAC
        'none'          - always identity
    """

    def __init__(self, method: str = GMCSettings['method'], downscale: int = GMCSettings['downscale']):
        if method not in GMCSettings.methods:
            raise ValueError(f"unknown gmc method {method!r}, expected one of {GMCSettings.methods}")
        self.method = method
        self.downscale = max(1, int(downscale))

        if self.method == 'ecc':
            self.warp_mode = cv2.MOTION_EUCLIDEAN
            self.criteria = (cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 100, 1e-5)
        elif self.method == 'sparseOptFlow':
            self.feature_params = dict(maxCorners=1000, qualityLevel=0.01, minDistance=1, blockSize=3,
                                       useHarrisDetector=False, k=0.04)

        self.prev_frame: Optional[np.ndarray] = None
        self.prev_keypoints: Optional[np.ndarray] = None

    def reset(self):
        self.prev_frame = None
        self.prev_keypoints = None

    def estimate_warp(self, frame: Optional[np.ndarray]) -> np.ndarray:
        """Warp from the previous frame to ``frame``; identity on the first frame or on failure."""
        if frame is None or self.method == 'none':
            return np.eye(2, 3)
        try:
            gray = self._preprocess(frame)
            if self.method == 'ecc':
                return self._apply_ecc(gray)
            return self._apply_sparse_optflow(gray)
        except cv2.error as exc:
            logger.warning("%s motion compensation failed, using identity: %s", self.method, exc)
            return np.eye(2, 3)

    def _preprocess(self, frame: np.ndarray) -> np.ndarray:
        frame = np.asarray(frame)
        if frame.ndim == 3:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        else:
            gray = frame
        if gray.dtype != np.uint8:
            gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        if self.downscale > 1:
            height, width = gray.shape[:2]
            gray = cv2.resize(gray, (width // self.downscale, height // self.downscale))
        return gray

    def _rescale(self, warp: np.ndarray) -> np.ndarray:
        warp = np.asarray(warp, dtype=float).copy()
        if self.downscale > 1:
            warp[0, 2] *= self.downscale
            warp[1, 2] *= self.downscale
        return warp

    def _apply_ecc(self, gray: np.ndarray) -> np.ndarray:
        gray = cv2.GaussianBlur(gray, (3, 3), 1.5)
        warp = np.eye(2, 3, dtype=np.float32)

        if self.prev_frame is None or self.prev_frame.shape != gray.shape:
            self.prev_frame = gray.copy()
            return np.eye(2, 3)

        try:
            _, warp = cv2.findTransformECC(self.prev_frame, gray, warp, self.warp_mode, self.criteria, None, 1)
        finally:
            self.prev_frame = gray.copy()
        return self._rescale(warp)

    def _apply_sparse_optflow(self, gray: np.ndarray) -> np.ndarray:
        warp = np.eye(2, 3)
        keypoints = cv2.goodFeaturesToTrack(gray, mask=None, **self.feature_params)

        if self.prev_frame is None or self.prev_keypoints is None or self.prev_frame.shape != gray.shape:
            self.prev_frame = gray.copy()
            self.prev_keypoints = keypoints
            return warp

        prev_frame, prev_keypoints = self.prev_frame, self.prev_keypoints
        self.prev_frame = gray.copy()
        self.prev_keypoints = keypoints
        matched, status, _ = cv2.calcOpticalFlowPyrLK(prev_frame, gray, prev_keypoints, None)
        if matched is None:
            logger.warning("optical flow found no correspondences, using identity")
            return warp

        keep = status.ravel() == 1
        prev_points = prev_keypoints.reshape((-1, 2))[keep]
        curr_points = matched.reshape((-1, 2))[keep]
        if len(prev_points) > 4:
            affine, _ = cv2.estimateAffinePartial2D(prev_points, curr_points, method=cv2.RANSAC)
            if affine is None:
                logger.warning("affine estimation failed, using identity")
                return warp
            return self._rescale(affine)

        logger.warning("not enough matching points (%d), using identity", len(prev_points))
        return warp
