"""
    BoT-SORT style tracker: Kalman-predicted tracks are associated to detections in
    a cascade of stages, optionally helped by appearance embeddings and camera
    motion compensation.
"""
import logging
from typing import Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from .assoc import (embedding_availability, embedding_distance, fuse_iou_with_emb, fuse_motion, fuse_score,
                    iou_distance, linear_assignment)
from .default_settings import BoTSORTConfig
from .gmc import GMC, MotionCompensator
from .kalmanfilter import KalmanFilter
from .track import Detection, FeatureExtractor, IdAllocator, STrack, TrackSnapshot, TrackState
from .track_pool import TrackPool

logger = logging.getLogger(__name__)

DetectionLike = Union[Detection, Mapping]


def merge_track_lists(tlista: List[STrack], tlistb: List[STrack]) -> List[STrack]:
    """Union of two track lists keyed by track id, first occurrence wins."""
    exists = {}
    res = []
    for t in tlista:
        exists[t.track_id] = 1
        res.append(t)
    for t in tlistb:
        tid = t.track_id
        if not exists.get(tid, 0):
            exists[tid] = 1
            res.append(t)
    return res


def sub_tracks(tlista: List[STrack], tlistb: List[STrack]) -> List[STrack]:
    """Tracks of tlista whose id does not appear in tlistb."""
    stracks = {}
    for t in tlista:
        stracks[t.track_id] = t
    for t in tlistb:
        tid = t.track_id
        if stracks.get(tid, 0):
            del stracks[tid]
    return list(stracks.values())


def remove_duplicate_tracks(stracksa: List[STrack], stracksb: List[STrack],
                            duplicate_thresh: float = 0.15,
                            appearance_thresh: Optional[float] = None) -> Tuple[List[STrack], List[STrack]]:
    """
    Drop near-identical tracks across two lists.

    For every pair closer than ``duplicate_thresh`` in IoU distance, the track that has
    been alive longer (frame_id - start_frame) is kept. With ``appearance_thresh``, a pair
    whose embeddings are both present and further apart than that is never a duplicate.
    The dropped tracks are only left out of the returned lists; changing their state is
    up to the caller.
    """
    duplicate = iou_distance(stracksa, stracksb) < duplicate_thresh
    if appearance_thresh is not None and duplicate.any():
        _, emb_mask = embedding_distance(stracksa, stracksb, appearance_thresh)
        duplicate &= ~(emb_mask & embedding_availability(stracksa, stracksb))
    pairs = np.where(duplicate)
    dupa, dupb = set(), set()
    for p, q in zip(*pairs):
        timep = stracksa[p].frame_id - stracksa[p].start_frame
        timeq = stracksb[q].frame_id - stracksb[q].start_frame
        if timep > timeq:
            dupb.add(q)
        else:
            dupa.add(p)
    resa = [t for i, t in enumerate(stracksa) if i not in dupa]
    resb = [t for i, t in enumerate(stracksb) if i not in dupb]
    return resa, resb


class BoTSORT(object):
    """
    Multi-object tracker. Call ``track`` once per frame with that frame's detections.

    config             : BoTSORTConfig, fixed for the tracker's lifetime (keyword overrides allowed)
    feature_extractor  : object with ``extract(frame, bbox_tlwh)``, used when ``use_reid`` is set
    motion_compensator : object with ``estimate_warp(frame)``; defaults to ``GMC(config.gmc_method)``
    """

    def __init__(self, config: Optional[BoTSORTConfig] = None,
                 feature_extractor: Optional[FeatureExtractor] = None,
                 motion_compensator: Optional[MotionCompensator] = None,
                 **overrides):
        self.config = (config or BoTSORTConfig()).replace(**overrides)

        self.kalman_filter = KalmanFilter()
        if feature_extractor is not None and not self.config.use_reid:
            logger.warning("feature extractor given but use_reid is off, appearance is ignored")
            feature_extractor = None
        if feature_extractor is None and self.config.use_reid:
            logger.warning("use_reid is on but no feature extractor was given, tracking with IoU only")
        self.feature_extractor = feature_extractor

        if motion_compensator is None:
            motion_compensator = GMC(self.config.gmc_method, self.config.gmc_downscale)
        self.motion_compensator = motion_compensator

        self.max_time_lost = self.config.max_time_lost
        self.long_lost_after = min(self.config.long_lost_frames, self.max_time_lost - 1)

        self.frame_id = 0
        self.pool = TrackPool()
        self._next_id = IdAllocator()
        self._feat_dim = None

    def reset(self):
        """Forget every track and restart ids and frame numbering."""
        self.frame_id = 0
        self.pool = TrackPool()
        self._next_id = IdAllocator()
        self._feat_dim = None
        if hasattr(self.motion_compensator, 'reset'):
            self.motion_compensator.reset()

    @property
    def tracked_tracks(self) -> List[STrack]:
        return self.pool.tracked

    @property
    def lost_tracks(self) -> List[STrack]:
        return self.pool.lost

    @property
    def removed_tracks(self) -> List[STrack]:
        return self.pool.removed

    def track(self, detections: Optional[Iterable[DetectionLike]],
              frame: Optional[np.ndarray] = None) -> List[TrackSnapshot]:
        """
        Advance the tracker by one frame.

        ``detections`` are Detection records or mappings with bbox_tlwh, class_id and
        confidence. ``frame`` is only handed to the feature extractor and the motion
        compensator. Returns the confirmed tracks that are currently tracked.
        """
        self.frame_id += 1
        cfg = self.config

        activated_stracks = []
        refind_stracks = []
        lost_stracks = []
        removed_stracks = []

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 1: split detections by confidence, embed the confident ones
        # ═══════════════════════════════════════════════════════════════════
        detections_high, detections_low = self._split_detections(detections)
        self._extract_embeddings(detections_high, frame)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 2: predict every live track one frame ahead
        # ═══════════════════════════════════════════════════════════════════
        unconfirmed = []
        tracked_stracks = []
        for track in self.pool.tracked:
            if not track.is_activated:
                unconfirmed.append(track)
            else:
                tracked_stracks.append(track)

        strack_pool = merge_track_lists(tracked_stracks, self.pool.lost)
        STrack.multi_predict(strack_pool + unconfirmed, self.kalman_filter)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 3: camera motion compensation on the predictions
        # ═══════════════════════════════════════════════════════════════════
        warp = self._estimate_warp(frame)
        STrack.multi_gmc(strack_pool, warp)
        STrack.multi_gmc(unconfirmed, warp)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 4: first association - tracked + lost vs high-confidence
        # ═══════════════════════════════════════════════════════════════════
        first = linear_assignment(self._first_association_cost(strack_pool, detections_high), cfg.match_thresh)

        for itracked, idet in first.matches:
            track = strack_pool[itracked]
            det = detections_high[idet]
            if track.state == TrackState.Tracked:
                track.update(det, self.frame_id)
                activated_stracks.append(track)
            else:
                track.re_activate(det, self.frame_id, new_id=False)
                refind_stracks.append(track)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 5: second association - leftover tracked vs low-confidence
        # ═══════════════════════════════════════════════════════════════════
        r_tracked_stracks = [strack_pool[i] for i in first.unmatched_tracks
                             if strack_pool[i].state == TrackState.Tracked]
        second = linear_assignment(iou_distance(r_tracked_stracks, detections_low), cfg.proximity_thresh)

        for itracked, idet in second.matches:
            track = r_tracked_stracks[itracked]
            track.update(detections_low[idet], self.frame_id)
            activated_stracks.append(track)

        for it in second.unmatched_tracks:
            track = r_tracked_stracks[it]
            track.mark_lost()
            lost_stracks.append(track)
            logger.debug("frame %d: track %d lost", self.frame_id, track.track_id)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 6: unconfirmed tracks vs remaining high-confidence
        # ═══════════════════════════════════════════════════════════════════
        remaining = [detections_high[i] for i in first.unmatched_detections]
        dists = fuse_score(iou_distance(unconfirmed, remaining), remaining)
        third = linear_assignment(dists, cfg.unconfirmed_match_thresh)

        for itracked, idet in third.matches:
            unconfirmed[itracked].update(remaining[idet], self.frame_id)
            activated_stracks.append(unconfirmed[itracked])

        for it in third.unmatched_tracks:
            track = unconfirmed[it]
            track.mark_removed()
            removed_stracks.append(track)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 7: init new tracks from what is left
        # ═══════════════════════════════════════════════════════════════════
        for inew in third.unmatched_detections:
            track = remaining[inew]
            if track.score < cfg.new_track_thresh:
                continue
            track.activate(self.kalman_filter, self.frame_id, self._next_id)
            activated_stracks.append(track)
            logger.debug("frame %d: new track %d", self.frame_id, track.track_id)

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 8: age out lost tracks
        # ═══════════════════════════════════════════════════════════════════
        for track in merge_track_lists(self.pool.lost, lost_stracks):
            if track.state not in (TrackState.Lost, TrackState.LongLost):
                continue  # found again this frame
            time_lost = self.frame_id - track.end_frame
            if time_lost > self.max_time_lost:
                track.mark_removed()
                removed_stracks.append(track)
                logger.debug("frame %d: track %d removed after %d frames lost",
                             self.frame_id, track.track_id, time_lost)
            elif track.state == TrackState.Lost and time_lost > self.long_lost_after:
                track.mark_long_lost()

        # ═══════════════════════════════════════════════════════════════════
        # ANCHOR Step 9: merge lists, de-duplicate and hand over to the pool
        # ═══════════════════════════════════════════════════════════════════
        tracked = [t for t in self.pool.tracked if t.state == TrackState.Tracked]
        tracked = merge_track_lists(tracked, activated_stracks)
        tracked = merge_track_lists(tracked, refind_stracks)
        lost = sub_tracks(self.pool.lost, tracked)
        lost = merge_track_lists(lost, lost_stracks)
        lost = sub_tracks(lost, removed_stracks)

        kept_tracked, kept_lost = remove_duplicate_tracks(
            tracked, lost, cfg.duplicate_thresh,
            cfg.appearance_thresh if self.feature_extractor is not None else None)
        for track in sub_tracks(tracked, kept_tracked) + sub_tracks(lost, kept_lost):
            track.mark_removed()
            removed_stracks.append(track)
            logger.debug("frame %d: track %d removed as duplicate", self.frame_id, track.track_id)

        self.pool.commit(kept_tracked, kept_lost, removed_stracks)

        return [t.snapshot() for t in kept_tracked if t.is_activated]

    def _split_detections(self, detections) -> Tuple[List[STrack], List[STrack]]:
        cfg = self.config
        high, low = [], []
        for raw in detections if detections is not None else ():
            try:
                det = Detection.coerce(raw)
                valid = det.is_valid()
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("frame %d: skipping unreadable detection %r (%s)", self.frame_id, raw, exc)
                continue
            if not valid:
                logger.warning("frame %d: skipping malformed detection %s", self.frame_id, det)
                continue

            strack = STrack(det.bbox_tlwh, det.confidence, det.class_id)
            if det.confidence >= cfg.track_high_thresh:
                high.append(strack)
            elif det.confidence > cfg.track_low_thresh:
                low.append(strack)
        return high, low

    def _extract_embeddings(self, detections: List[STrack], frame: Optional[np.ndarray]):
        if self.feature_extractor is None or frame is None:
            return
        for det in detections:
            try:
                feat = self.feature_extractor.extract(frame, det.tlwh)
            except Exception as exc:  # extractor failures degrade to IoU-only matching
                logger.warning("frame %d: feature extraction failed: %s", self.frame_id, exc)
                continue
            if feat is None:
                continue
            feat = np.asarray(feat, dtype=float).ravel()
            if self._feat_dim is None:
                self._feat_dim = feat.size
            elif feat.size != self._feat_dim:
                logger.warning("frame %d: ignoring embedding of size %d, expected %d",
                               self.frame_id, feat.size, self._feat_dim)
                continue
            det.update_features(feat)

    def _estimate_warp(self, frame: Optional[np.ndarray]) -> np.ndarray:
        identity = np.eye(2, 3)
        if self.motion_compensator is None or frame is None:
            return identity
        try:
            warp = np.asarray(self.motion_compensator.estimate_warp(frame), dtype=float)
        except Exception as exc:  # compensator failures degrade to no compensation
            logger.warning("frame %d: motion compensation failed: %s", self.frame_id, exc)
            return identity
        if warp.shape != (2, 3) or not np.all(np.isfinite(warp)):
            logger.warning("frame %d: ignoring invalid warp of shape %s", self.frame_id, warp.shape)
            return identity
        return warp

    def _first_association_cost(self, tracks: List[STrack], detections: List[STrack]) -> np.ndarray:
        """
        IoU cost weighted by detection score; where both sides carry an embedding it is
        averaged with the motion-gated appearance cost and either mask can veto the pair.
        """
        cfg = self.config
        ious_dists, ious_dists_mask = iou_distance(tracks, detections, cfg.proximity_thresh)
        ious_dists = fuse_score(ious_dists, detections)
        if self.feature_extractor is None or ious_dists.size == 0:
            return ious_dists

        has_emb = embedding_availability(tracks, detections)
        if not has_emb.any():
            return ious_dists

        emb_dists, emb_dists_mask = embedding_distance(tracks, detections, cfg.appearance_thresh)
        emb_dists = fuse_motion(self.kalman_filter, emb_dists, tracks, detections, cfg.lambda_)
        fused = fuse_iou_with_emb(ious_dists, emb_dists, ious_dists_mask, emb_dists_mask)
        return np.where(has_emb, fused, ious_dists)

    def get_tracker_statistics(self) -> dict:
        tracked = self.pool.tracked
        confirmed = sum(1 for t in tracked if t.is_activated)
        lost = self.pool.lost
        return {
            'frame_id': self.frame_id,
            'confirmed': confirmed,
            'unconfirmed': len(tracked) - confirmed,
            'lost': sum(1 for t in lost if t.state == TrackState.Lost),
            'long_lost': sum(1 for t in lost if t.state == TrackState.LongLost),
            'removed': len(self.pool.removed),
            'last_id': self._next_id.last_id,
        }
