"""
    Cost matrices between tracks and detections, their fusion, and the assignment solver.

    Rows are always tracks and columns detections. Every function returns a
    matrix of shape (len(tracks), len(detections)), also when a side is empty.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment

from .kalmanfilter import KalmanFilter, chi2inv95


@dataclass
class AssociationResult:
    matches: List[Tuple[int, int]] = field(default_factory=list)
    unmatched_tracks: List[int] = field(default_factory=list)
    unmatched_detections: List[int] = field(default_factory=list)

    def __iter__(self):
        return iter((self.matches, self.unmatched_tracks, self.unmatched_detections))


def _as_tlbrs(items) -> np.ndarray:
    if isinstance(items, np.ndarray):
        return items.astype(float).reshape((-1, 4))
    if len(items) > 0 and isinstance(items[0], np.ndarray):
        return np.asarray(items, dtype=float).reshape((-1, 4))
    return np.asarray([t.tlbr for t in items], dtype=float).reshape((-1, 4))


def iou_batch(atlbrs, btlbrs) -> np.ndarray:
    """
    Pairwise IoU between two sets of [x1, y1, x2, y2] boxes.
    A box with zero area overlaps nothing.
    """
    a = np.asarray(atlbrs, dtype=float).reshape((-1, 4))
    b = np.asarray(btlbrs, dtype=float).reshape((-1, 4))
    ious = np.zeros((len(a), len(b)), dtype=float)
    if ious.size == 0:
        return ious

    xx1 = np.maximum(a[:, None, 0], b[None, :, 0])
    yy1 = np.maximum(a[:, None, 1], b[None, :, 1])
    xx2 = np.minimum(a[:, None, 2], b[None, :, 2])
    yy2 = np.minimum(a[:, None, 3], b[None, :, 3])
    inter = np.maximum(0., xx2 - xx1) * np.maximum(0., yy2 - yy1)

    area_a = np.maximum(0., a[:, 2] - a[:, 0]) * np.maximum(0., a[:, 3] - a[:, 1])
    area_b = np.maximum(0., b[:, 2] - b[:, 0]) * np.maximum(0., b[:, 3] - b[:, 1])
    union = area_a[:, None] + area_b[None, :] - inter

    np.divide(inter, union, out=ious, where=union > 0)
    return ious


def iou_distance(atracks, btracks, max_iou_distance: Optional[float] = None):
    """
    1 - IoU between tracks (rows) and detections (columns).

    Accepts track objects or arrays of tlbr boxes. With ``max_iou_distance`` the
    gating mask ``cost > max_iou_distance`` is returned alongside the cost.
    """
    cost_matrix = 1. - iou_batch(_as_tlbrs(atracks), _as_tlbrs(btracks))
    if max_iou_distance is None:
        return cost_matrix
    return cost_matrix, cost_matrix > max_iou_distance


def embedding_distance(tracks, detections, max_embedding_distance: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Cosine distance, clipped to [0, 1], between the tracks' smoothed embeddings and
    the detections' current embeddings. A pair where either side has no embedding
    gets the maximal distance 1.
    """
    cost_matrix = np.ones((len(tracks), len(detections)), dtype=float)
    if cost_matrix.size > 0:
        track_rows = [i for i, t in enumerate(tracks) if t.smooth_feat is not None]
        det_cols = [j for j, d in enumerate(detections) if d.curr_feat is not None]
        if track_rows and det_cols:
            track_features = np.asarray([tracks[i].smooth_feat for i in track_rows], dtype=float)
            det_features = np.asarray([detections[j].curr_feat for j in det_cols], dtype=float)
            track_features /= np.linalg.norm(track_features, axis=1, keepdims=True)
            det_features /= np.linalg.norm(det_features, axis=1, keepdims=True)
            cosine = 1. - track_features.dot(det_features.T)
            cost_matrix[np.ix_(track_rows, det_cols)] = np.clip(cosine, 0., 1.)
    return cost_matrix, cost_matrix > max_embedding_distance


def embedding_availability(tracks, detections) -> np.ndarray:
    """True where both the track and the detection carry an embedding."""
    track_has = np.asarray([t.smooth_feat is not None for t in tracks], dtype=bool)
    det_has = np.asarray([d.curr_feat is not None for d in detections], dtype=bool)
    return np.outer(track_has, det_has).reshape((len(tracks), len(detections)))


def fuse_score(cost_matrix: np.ndarray, detections) -> np.ndarray:
    """fused = 1 - (1 - cost) * detection confidence, column by column."""
    if cost_matrix.size == 0:
        return cost_matrix
    if cost_matrix.shape[1] != len(detections):
        raise ValueError(f"cost matrix has {cost_matrix.shape[1]} columns for {len(detections)} detections")
    iou_sim = 1 - cost_matrix
    det_scores = np.array([det.score for det in detections], dtype=float)
    fuse_sim = iou_sim * det_scores[None, :]
    return 1 - fuse_sim


def fuse_motion(kf: KalmanFilter, cost_matrix: np.ndarray, tracks, detections,
                lambda_: float = 0.98, only_position: bool = False) -> np.ndarray:
    """
    Gate and blend a cost matrix with the Mahalanobis distance of each detection
    under each track's predicted state.

    Pairs beyond the chi-square 95% gate become inf; the rest become
    ``lambda_ * cost + (1 - lambda_) * gating_distance / gating_threshold``.
    """
    if cost_matrix.size == 0:
        return cost_matrix
    if cost_matrix.shape != (len(tracks), len(detections)):
        raise ValueError(f"cost matrix shape {cost_matrix.shape} does not match "
                         f"{len(tracks)} tracks x {len(detections)} detections")
    cost_matrix = cost_matrix.astype(float, copy=True)
    gating_dim = 2 if only_position else 4
    gating_threshold = chi2inv95[gating_dim]
    measurements = np.asarray([det.xyah for det in detections], dtype=float)
    for row, track in enumerate(tracks):
        gating_distance = kf.gating_distance(
            track.mean, track.covariance, measurements, only_position)
        gated = gating_distance > gating_threshold
        cost_matrix[row] = lambda_ * cost_matrix[row] + (1 - lambda_) * (gating_distance / gating_threshold)
        cost_matrix[row, gated] = np.inf
    return cost_matrix


def fuse_iou_with_emb(iou_cost: np.ndarray, emb_cost: np.ndarray,
                      iou_mask: np.ndarray, emb_mask: np.ndarray,
                      emb_weight: float = 0.5) -> np.ndarray:
    """
    Combine IoU and appearance costs. A pair vetoed by either mask costs inf;
    any other pair gets the weighted mean ``(1 - emb_weight) * iou + emb_weight * emb``.
    """
    iou_cost = np.asarray(iou_cost, dtype=float)
    emb_cost = np.asarray(emb_cost, dtype=float)
    iou_mask = np.asarray(iou_mask, dtype=bool)
    emb_mask = np.asarray(emb_mask, dtype=bool)
    shapes = {iou_cost.shape, emb_cost.shape, iou_mask.shape, emb_mask.shape}
    if len(shapes) != 1:
        raise ValueError(f"cost matrices and masks disagree in shape: {sorted(shapes)}")
    if not 0. <= emb_weight <= 1.:
        raise ValueError(f"emb_weight must lie in [0, 1], got {emb_weight}")

    fused = (1. - emb_weight) * iou_cost + emb_weight * emb_cost
    fused[iou_mask | emb_mask] = np.inf
    return fused


def linear_assignment(cost_matrix: np.ndarray, thresh: float) -> AssociationResult:
    """
    Minimum cost assignment of tracks to detections keeping only pairs with cost <= thresh.

    Costs above ``thresh`` (inf included) are capped just above it before solving,
    so the solver never prefers a rejected pair over an acceptable one.
    """
    cost_matrix = np.asarray(cost_matrix, dtype=float)
    if cost_matrix.ndim != 2:
        raise ValueError(f"cost matrix must be 2-D, got shape {cost_matrix.shape}")
    n_rows, n_cols = cost_matrix.shape
    if n_rows == 0 or n_cols == 0:
        return AssociationResult([], list(range(n_rows)), list(range(n_cols)))

    cap = thresh + 1e-4
    capped = np.where(np.isfinite(cost_matrix), np.minimum(cost_matrix, cap), cap)
    rows, cols = linear_sum_assignment(capped)

    matches = [(int(r), int(c)) for r, c in zip(rows, cols) if cost_matrix[r, c] <= thresh]
    matched_rows = {r for r, _ in matches}
    matched_cols = {c for _, c in matches}
    unmatched_a = [i for i in range(n_rows) if i not in matched_rows]
    unmatched_b = [j for j in range(n_cols) if j not in matched_cols]
    return AssociationResult(matches, unmatched_a, unmatched_b)
