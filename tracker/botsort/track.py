"""
    Track entity, its lifecycle state machine and the records exchanged with callers.
"""
import logging
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Mapping, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .kalmanfilter import KalmanFilter

logger = logging.getLogger(__name__)


class TrackState(IntEnum):
    New = 0
    Tracked = 1
    Lost = 2
    LongLost = 3
    Removed = 4


_ALLOWED_TRANSITIONS = {
    TrackState.New: {TrackState.Tracked, TrackState.Removed},
    TrackState.Tracked: {TrackState.Tracked, TrackState.Lost, TrackState.Removed},
    TrackState.Lost: {TrackState.Tracked, TrackState.LongLost, TrackState.Removed},
    TrackState.LongLost: {TrackState.Tracked, TrackState.Removed},
    TrackState.Removed: set(),
}


class FeatureExtractor(Protocol):
    def extract(self, frame: np.ndarray, bbox_tlwh: Sequence[float]) -> Optional[np.ndarray]:
        ...


class TrackStateError(RuntimeError):
    """Raised on a lifecycle transition or ownership change the tracker never makes."""


class IdAllocator(object):
    """Monotonic track id source owned by a single tracker instance."""

    def __init__(self, start: int = 0):
        self._count = start

    def __call__(self) -> int:
        self._count += 1
        return self._count

    @property
    def last_id(self) -> int:
        return self._count


@dataclass(frozen=True)
class Detection:
    bbox_tlwh: Tuple[float, float, float, float]
    class_id: int = 0
    confidence: float = 1.0

    @classmethod
    def coerce(cls, obj: Union["Detection", Mapping]) -> "Detection":
        if isinstance(obj, Detection):
            return obj
        return cls(bbox_tlwh=tuple(float(v) for v in obj['bbox_tlwh']),
                   class_id=int(obj.get('class_id', 0)),
                   confidence=float(obj.get('confidence', 1.0)))

    def is_valid(self) -> bool:
        tlwh = np.asarray(self.bbox_tlwh, dtype=float)
        return (tlwh.shape == (4,) and bool(np.all(np.isfinite(tlwh)))
                and tlwh[2] > 0 and tlwh[3] > 0 and np.isfinite(self.confidence))


@dataclass(frozen=True)
class TrackSnapshot:
    track_id: int
    bbox_tlwh: Tuple[float, float, float, float]
    class_id: int
    confidence: float
    state: TrackState
    tracklet_len: int
    start_frame: int


class STrack(object):
    """
    A persistent track, or a detection wrapped so it can go through the same cost code.

    A detection wrapper has no id (``track_id == 0``) and no Kalman state
    (``mean is None``) until it is activated.
    """

    def __init__(self, tlwh: Sequence[float], score: float, class_id: int = 0,
                 feat: Optional[np.ndarray] = None, feat_history: int = 50):
        # wait activate
        self._tlwh = np.asarray(tlwh, dtype=float)
        self.det_tlwh = self._tlwh.copy()
        self.kalman_filter: Optional[KalmanFilter] = None
        self.mean, self.covariance = None, None
        self.is_activated = False
        self.track_id = 0
        self.state = TrackState.New

        self.score = float(score)
        self.class_id = int(class_id)
        self.tracklet_len = 0
        self.frame_id = 0
        self.start_frame = 0

        self.smooth_feat = None
        self.curr_feat = None
        self.features = deque([], maxlen=feat_history)
        self.alpha = 0.9
        if feat is not None:
            self.update_features(feat)

    def __repr__(self):
        return f"STrack(id={self.track_id}, state={self.state.name}, frames={self.start_frame}-{self.end_frame})"

    # ------------------------------------------------------------------ appearance

    def update_features(self, feat: np.ndarray):
        feat = np.asarray(feat, dtype=float).ravel()
        norm = np.linalg.norm(feat)
        if norm == 0 or not np.isfinite(norm):
            logger.warning("ignoring degenerate embedding for track %d", self.track_id)
            return
        feat = feat / norm
        self.curr_feat = feat
        if self.smooth_feat is None:
            self.smooth_feat = feat
        else:
            self.smooth_feat = self.alpha * self.smooth_feat + (1 - self.alpha) * feat
            self.smooth_feat /= np.linalg.norm(self.smooth_feat)
        self.features.append(feat)

    @property
    def has_embedding(self) -> bool:
        return self.smooth_feat is not None

    # ------------------------------------------------------------------ lifecycle

    def _transition(self, new_state: TrackState):
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise TrackStateError(
                f"track {self.track_id}: {self.state.name} -> {new_state.name} is not allowed")
        self.state = new_state

    @property
    def end_frame(self) -> int:
        return self.frame_id

    def activate(self, kalman_filter: KalmanFilter, frame_id: int, next_id: Callable[[], int]):
        """
        Start a new tracklet from this track's own detection.

        Tracks born on the first frame are confirmed right away; later ones stay
        unconfirmed until they are matched again.
        """
        self._transition(TrackState.Tracked)
        self.kalman_filter = kalman_filter
        if self.track_id == 0:
            self.track_id = next_id()
        self.mean, self.covariance = self.kalman_filter.initiate(self.tlwh_to_xyah(self._tlwh))

        self.tracklet_len = 1
        if frame_id == 1:
            self.is_activated = True
        self.frame_id = frame_id
        self.start_frame = frame_id

    def re_activate(self, new_track: "STrack", frame_id: int, new_id: bool = False,
                    next_id: Optional[Callable[[], int]] = None):
        self._transition(TrackState.Tracked)
        self.mean, self.covariance = self.kalman_filter.update(
            self.mean, self.covariance, self.tlwh_to_xyah(new_track.tlwh))
        if new_track.curr_feat is not None:
            self.update_features(new_track.curr_feat)
        self.tracklet_len = 1
        self.is_activated = True
        self.frame_id = frame_id
        if new_id:
            if next_id is None:
                raise TrackStateError("re_activate(new_id=True) needs an id source")
            self.track_id = next_id()
        self.score = new_track.score
        self.class_id = new_track.class_id
        self.det_tlwh = new_track.tlwh

    def update(self, new_track: "STrack", frame_id: int):
        """Update a matched track with the detection it was associated to."""
        if self.state not in (TrackState.Tracked, TrackState.New):
            raise TrackStateError(
                f"track {self.track_id}: update needs a tracked track, got {self.state.name}; use re_activate")
        self._transition(TrackState.Tracked)
        self.frame_id = frame_id
        self.tracklet_len += 1

        new_tlwh = new_track.tlwh
        self.mean, self.covariance = self.kalman_filter.update(
            self.mean, self.covariance, self.tlwh_to_xyah(new_tlwh))
        if new_track.curr_feat is not None:
            self.update_features(new_track.curr_feat)

        self.is_activated = True
        self.score = new_track.score
        self.class_id = new_track.class_id
        self.det_tlwh = new_tlwh

    def mark_lost(self):
        self._transition(TrackState.Lost)

    def mark_long_lost(self):
        self._transition(TrackState.LongLost)

    def mark_removed(self):
        self._transition(TrackState.Removed)

    # ------------------------------------------------------------------ motion

    @staticmethod
    def multi_predict(stracks, kalman_filter: KalmanFilter):
        """Advance every track one frame; tracks not in Tracked state keep their height."""
        if len(stracks) == 0:
            return
        multi_mean = np.asarray([st.mean.copy() for st in stracks])
        multi_covariance = np.asarray([st.covariance for st in stracks])
        for i, st in enumerate(stracks):
            if st.state != TrackState.Tracked:
                multi_mean[i][7] = 0
        multi_mean, multi_covariance = kalman_filter.multi_predict(multi_mean, multi_covariance)
        for st, mean, cov in zip(stracks, multi_mean, multi_covariance):
            st.mean = mean
            st.covariance = cov

    @staticmethod
    def multi_gmc(stracks, warp: Optional[np.ndarray] = None):
        """Move predicted states into the current frame's coordinates with a 2x3 affine warp."""
        if len(stracks) == 0:
            return
        warp = np.eye(2, 3) if warp is None else np.asarray(warp, dtype=float)
        rotation = warp[:2, :2]
        translation = warp[:2, 2]
        transform = np.eye(8)
        transform[0:2, 0:2] = rotation
        transform[4:6, 4:6] = rotation

        for st in stracks:
            mean = transform.dot(st.mean)
            mean[:2] += translation
            st.mean = mean
            st.covariance = transform.dot(st.covariance).dot(transform.T)

    # ------------------------------------------------------------------ geometry

    @property
    def tlwh(self) -> np.ndarray:
        """Current position in (top left x, top left y, width, height)."""
        if self.mean is None:
            return self._tlwh.copy()
        ret = self.mean[:4].copy()
        ret[2] *= ret[3]
        ret[:2] -= ret[2:] / 2
        return ret

    @property
    def tlbr(self) -> np.ndarray:
        ret = self.tlwh.copy()
        ret[2:] += ret[:2]
        return ret

    @property
    def xyah(self) -> np.ndarray:
        return self.tlwh_to_xyah(self.tlwh)

    @staticmethod
    def tlwh_to_xyah(tlwh) -> np.ndarray:
        ret = np.asarray(tlwh, dtype=float).copy()
        ret[:2] += ret[2:] / 2
        ret[2] /= ret[3]
        return ret

    @staticmethod
    def tlbr_to_tlwh(tlbr) -> np.ndarray:
        ret = np.asarray(tlbr, dtype=float).copy()
        ret[2:] -= ret[:2]
        return ret

    @staticmethod
    def tlwh_to_tlbr(tlwh) -> np.ndarray:
        ret = np.asarray(tlwh, dtype=float).copy()
        ret[2:] += ret[:2]
        return ret

    def snapshot(self) -> TrackSnapshot:
        return TrackSnapshot(
            track_id=self.track_id,
            bbox_tlwh=tuple(float(v) for v in self.tlwh),
            class_id=self.class_id,
            confidence=self.score,
            state=self.state,
            tracklet_len=self.tracklet_len,
            start_frame=self.start_frame,
        )
