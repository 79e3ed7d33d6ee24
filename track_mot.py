#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Run the BoT-SORT tracker over a MOTChallenge detection file
────────────────────────────────────────────────────────────────────────────
* Input   : det.txt rows  frame,id,x,y,w,h,conf,...   (id is ignored)
* Frames  : optional image directory (000001.jpg, ...) for camera motion compensation
* Output  : rows  frame,id,x,y,w,h,conf,-1,-1,-1  of the confirmed tracks
"""
import argparse
import logging
import os
from collections import defaultdict

import cv2
import numpy as np
from tqdm import tqdm

from tracker.botsort.bot_sort import BoTSORT
from tracker.botsort.default_settings import BoTSORTConfig, GMCSettings
from tracker.botsort.track import Detection

logger = logging.getLogger("track_mot")


# ────────────────────────────── CLI ──────────────────────────────────── #
# ANCHOR argparse
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="BoT-SORT over MOTChallenge detections")
    # NOTE [args] input & output
    parser.add_argument("--detections", type=str, required=True,
                        help="MOTChallenge detection file (frame,id,x,y,w,h,conf,...)")
    parser.add_argument("--output", type=str, required=True,
                        help="Where to write the tracking results")
    parser.add_argument("--images", type=str, default=None,
                        help="Directory with the sequence frames, enables motion compensation")
    parser.add_argument("--image-ext", type=str, default=".jpg",
                        help="Extension of the frame images")
    # NOTE [args] tracker
    parser.add_argument("--config", type=str, default=None,
                        help="INI file with [tracker] / [gmc] sections")
    parser.add_argument("--gmc-method", choices=GMCSettings.methods, default=None,
                        help="Override the motion compensation method")
    parser.add_argument("--frame-rate", type=int, default=None,
                        help="Override the sequence frame rate")
    parser.add_argument("--min-conf", type=float, default=0.0,
                        help="Drop detections below this confidence before tracking")
    parser.add_argument("--verbose", action="store_true",
                        help="Log track lifecycle events")
    return parser.parse_args(argv)


def load_detections(path: str, min_conf: float = 0.0):
    """frame number -> list of Detection, read from a MOT style csv."""
    rows = np.loadtxt(path, delimiter=",", ndmin=2) if os.path.getsize(path) > 0 else np.zeros((0, 7))
    if rows.size and rows.shape[1] < 7:
        raise ValueError(f"{path}: expected at least 7 columns, got {rows.shape[1]}")

    per_frame = defaultdict(list)
    for row in rows:
        conf = float(row[6])
        if conf < min_conf:
            continue
        per_frame[int(row[0])].append(Detection(bbox_tlwh=tuple(float(v) for v in row[2:6]), confidence=conf))
    return per_frame


def load_frame(images_dir, frame_id: int, ext: str = ".jpg"):
    if images_dir is None:
        return None
    path = os.path.join(images_dir, f"{frame_id:06d}{ext}")
    frame = cv2.imread(path)
    if frame is None:
        logger.warning("could not read frame %s, tracking without motion compensation", path)
    return frame


def write_results(path: str, results):
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(path, "w") as f:
        for frame_id, snapshots in results:
            for t in snapshots:
                x, y, w, h = t.bbox_tlwh
                f.write(f"{frame_id},{t.track_id},{x:.2f},{y:.2f},{w:.2f},{h:.2f},{t.confidence:.3f},-1,-1,-1\n")


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = BoTSORTConfig.from_ini(args.config) if args.config else BoTSORTConfig()
    gmc_method = args.gmc_method
    if gmc_method is None and args.images is None:
        gmc_method = "none"
    config = config.replace(gmc_method=gmc_method, frame_rate=args.frame_rate)

    detections = load_detections(args.detections, args.min_conf)
    last_frame = max(detections) if detections else 0

    tracker = BoTSORT(config)
    results = []
    for frame_id in tqdm(range(1, last_frame + 1), desc="tracking", unit="frame"):
        frame = load_frame(args.images, frame_id, args.image_ext)
        results.append((frame_id, tracker.track(detections.get(frame_id, []), frame)))

    write_results(args.output, results)

    stats = tracker.get_tracker_statistics()
    print(f"✅ {last_frame} frames, {stats['last_id']} tracks → {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
