"""Decision rules of the tracking front end: keyframe insertion, success checks, search windows."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional, Sequence

from slamkit.sensor import Sensor

# Local-map tracking needs this many inliers, more right after a relocalisation.
_MIN_INLIERS = 30
_MIN_INLIERS_AFTER_RELOC = 50

# Close points: keep creating until this many are in and the depth is "far".
_MIN_CLOSE_POINTS = 100


class TrackingState(IntEnum):
    SYSTEM_NOT_READY = -1
    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


@dataclass
class KeyFrameContext:
    """Everything the keyframe-insertion rule looks at for the current frame.

    ``ref_matches`` is the number of map points tracked in the reference
    keyframe that have at least :attr:`min_observations` observations.
    ``depths`` and ``tracked`` hold, per keypoint of the current frame, the
    sensor depth and whether a non-outlier map point is matched to it.
    ``interrupt_ba`` is called when a keyframe is wanted but local mapping is busy.
    """

    sensor: Sensor
    frame_id: int
    last_keyframe_id: int
    last_reloc_frame_id: int
    n_keyframes: int
    ref_matches: int
    matches_inliers: int
    max_frames: int
    min_frames: int = 0
    th_depth: float = 0.0
    only_tracking: bool = False
    local_mapper_stopped: bool = False
    local_mapper_stop_requested: bool = False
    local_mapping_idle: bool = True
    keyframes_in_queue: int = 0
    depths: Sequence[float] = field(default_factory=list)
    tracked: Sequence[bool] = field(default_factory=list)
    interrupt_ba: Optional[Callable[[], None]] = None

    def __post_init__(self):
        self.sensor = Sensor(self.sensor)
        if len(self.depths) != len(self.tracked):
            raise ValueError("depths and tracked must have one entry per keypoint")

    @property
    def min_observations(self) -> int:
        """Observations a reference map point needs to count as tracked."""
        return 2 if self.n_keyframes <= 2 else 3

    def close_point_counts(self):
        """Return ``(tracked_close, non_tracked_close)`` for points nearer than ``th_depth``."""
        tracked_close = 0
        non_tracked_close = 0
        for depth, is_tracked in zip(self.depths, self.tracked):
            if 0 < depth < self.th_depth:
                if is_tracked:
                    tracked_close += 1
                else:
                    non_tracked_close += 1
        return tracked_close, non_tracked_close


def need_new_keyframe(ctx):
    """Decide whether the current frame should become a keyframe."""
    if ctx.only_tracking:
        return False

    # Local mapping frozen by a loop closure.
    if ctx.local_mapper_stopped or ctx.local_mapper_stop_requested:
        return False

    n_kfs = ctx.n_keyframes
    if ctx.frame_id < ctx.last_reloc_frame_id + ctx.max_frames and n_kfs > ctx.max_frames:
        return False

    monocular = ctx.sensor == Sensor.MONOCULAR
    idle = ctx.local_mapping_idle

    if monocular:
        tracked_close, non_tracked_close = 0, 0
    else:
        tracked_close, non_tracked_close = ctx.close_point_counts()
    need_to_insert_close = tracked_close < 100 and non_tracked_close > 70

    th_ref_ratio = 0.75
    if n_kfs < 2:
        th_ref_ratio = 0.4
    if monocular:
        th_ref_ratio = 0.9

    inliers = ctx.matches_inliers
    ref = ctx.ref_matches

    c1a = ctx.frame_id >= ctx.last_keyframe_id + ctx.max_frames
    c1b = ctx.frame_id >= ctx.last_keyframe_id + ctx.min_frames and idle
    c1c = not monocular and (inliers < ref * 0.25 or need_to_insert_close)
    c2 = (inliers < ref * th_ref_ratio or need_to_insert_close) and inliers > 15

    if not ((c1a or c1b or c1c) and c2):
        return False
    if idle:
        return True

    if ctx.interrupt_ba is not None:
        ctx.interrupt_ba()
    if monocular:
        return False
    return ctx.keyframes_in_queue < 3


def local_map_tracking_succeeded(frame_id, last_reloc_frame_id, max_frames, matches_inliers):
    """Whether tracking the local map found enough inliers; stricter after relocalisation."""
    if frame_id < last_reloc_frame_id + max_frames and matches_inliers < _MIN_INLIERS_AFTER_RELOC:
        return False
    return matches_inliers >= _MIN_INLIERS


def select_close_points(depths, th_depth, needs_new):
    """Indices of keypoints for which new map points should be created.

    Keypoints with positive depth are visited from nearest to farthest. All
    points closer than ``th_depth`` are visited; if fewer than a hundred are,
    the nearest far ones make up the count. Of the visited keypoints, those
    flagged in ``needs_new`` are returned in visiting order.
    """
    if len(depths) != len(needs_new):
        raise ValueError("depths and needs_new must have one entry per keypoint")

    ordered = sorted((depth, index) for index, depth in enumerate(depths) if depth > 0)
    selected = []
    n_points = 0
    for depth, index in ordered:
        if needs_new[index]:
            selected.append(index)
        n_points += 1
        if depth > th_depth and n_points > _MIN_CLOSE_POINTS:
            break
    return selected


def motion_model_window(sensor):
    """Search radius in pixels when matching against the previous frame."""
    return 7 if Sensor(sensor) == Sensor.STEREO else 15


def local_search_window(sensor, frame_id, last_reloc_frame_id):
    """Search radius factor when projecting local map points into the frame."""
    th = 1
    if Sensor(sensor) == Sensor.RGBD:
        th = 3
    if frame_id < last_reloc_frame_id + 2:
        th = 5
    return th