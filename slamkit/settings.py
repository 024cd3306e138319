"""Camera, feature-extractor and viewer settings read from a YAML settings file."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

DEFAULT_FPS = 30.0
DEFAULT_IMAGE_WIDTH = 640
DEFAULT_IMAGE_HEIGHT = 480

_DIRECTIVE = re.compile(r"^%YAML[: ]\s*\d+\.\d+\s*$")


class _SettingsLoader(yaml.SafeLoader):
    """Safe loader that also understands ``!!opencv-matrix`` nodes."""


def _construct_matrix(loader, node):
    mapping = loader.construct_mapping(node, deep=True)
    try:
        rows = int(mapping["rows"])
        cols = int(mapping["cols"])
        data = mapping["data"]
    except KeyError as exc:
        raise yaml.constructor.ConstructorError(
            None, None, f"matrix node is missing {exc.args[0]!r}", node.start_mark
        ) from None
    values = np.asarray([float(v) for v in data], dtype=float)
    if values.size != rows * cols:
        raise yaml.constructor.ConstructorError(
            None, None, "matrix data does not match rows x cols", node.start_mark
        )
    return values.reshape(rows, cols)


_SettingsLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


def read_settings_file(path):
    """Read a settings file into a dictionary of its top-level keys.

    The non-standard ``%YAML:1.0`` header line is accepted. Raises
    :class:`FileNotFoundError` when the file is missing and
    :class:`ValueError` when it does not hold a mapping.
    """
    text = Path(path).read_text(encoding="utf-8")
    lines = text.splitlines()
    if lines and _DIRECTIVE.match(lines[0].strip()):
        lines = lines[1:]
    data = yaml.load("\n".join(lines), Loader=_SettingsLoader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"settings file {path} does not hold a mapping")
    return data


def _number(values, key):
    """Numeric value of ``key``; a missing key reads as zero."""
    value = values.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"setting {key!r} is not a number: {value!r}")


def _integer(values, key):
    return int(round(_number(values, key)))


@dataclass(frozen=True)
class CameraSettings:
    """Pinhole intrinsics, distortion, stereo baseline and frame rate."""

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    bf: float = 0.0
    fps: float = DEFAULT_FPS
    rgb: bool = False

    @property
    def K(self):
        """3x3 calibration matrix."""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ])

    @property
    def dist_coef(self):
        """Distortion coefficients ``k1 k2 p1 p2`` plus ``k3`` when it is non-zero."""
        coefs = [self.k1, self.k2, self.p1, self.p2]
        if self.k3 != 0:
            coefs.append(self.k3)
        return np.array(coefs)

    @property
    def min_frames(self):
        return 0

    @property
    def max_frames(self):
        """Frames between keyframe insertions and relocalisation checks."""
        return int(self.fps)


@dataclass(frozen=True)
class OrbSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int

    @property
    def initial_features(self):
        """Feature budget of the extractor used for monocular initialisation."""
        return 2 * self.n_features


@dataclass(frozen=True)
class ViewerSettings:
    """Viewer frame rate, image size and initial viewpoint."""

    fps: float
    image_width: int
    image_height: int
    viewpoint_x: float
    viewpoint_y: float
    viewpoint_z: float
    viewpoint_f: float

    @property
    def frame_time_ms(self):
        return 1e3 / self.fps


def camera_from_settings(values):
    """Build :class:`CameraSettings` from the ``Camera.*`` keys; fps 0 means 30."""
    fps = _number(values, "Camera.fps")
    if fps == 0:
        fps = DEFAULT_FPS
    return CameraSettings(
        fx=_number(values, "Camera.fx"),
        fy=_number(values, "Camera.fy"),
        cx=_number(values, "Camera.cx"),
        cy=_number(values, "Camera.cy"),
        k1=_number(values, "Camera.k1"),
        k2=_number(values, "Camera.k2"),
        p1=_number(values, "Camera.p1"),
        p2=_number(values, "Camera.p2"),
        k3=_number(values, "Camera.k3"),
        bf=_number(values, "Camera.bf"),
        fps=fps,
        rgb=bool(_integer(values, "Camera.RGB")),
    )


def orb_from_settings(values):
    """Build :class:`OrbSettings` from the ``ORBextractor.*`` keys."""
    return OrbSettings(
        n_features=_integer(values, "ORBextractor.nFeatures"),
        scale_factor=_number(values, "ORBextractor.scaleFactor"),
        n_levels=_integer(values, "ORBextractor.nLevels"),
        ini_th_fast=_integer(values, "ORBextractor.iniThFAST"),
        min_th_fast=_integer(values, "ORBextractor.minThFAST"),
    )


def viewer_from_settings(values):
    """Build :class:`ViewerSettings`; fps below 1 means 30, a missing size 640x480."""
    fps = _number(values, "Camera.fps")
    if fps < 1:
        fps = DEFAULT_FPS
    width = _integer(values, "Camera.width")
    height = _integer(values, "Camera.height")
    if width < 1 or height < 1:
        width, height = DEFAULT_IMAGE_WIDTH, DEFAULT_IMAGE_HEIGHT
    return ViewerSettings(
        fps=fps,
        image_width=width,
        image_height=height,
        viewpoint_x=_number(values, "Viewer.ViewpointX"),
        viewpoint_y=_number(values, "Viewer.ViewpointY"),
        viewpoint_z=_number(values, "Viewer.ViewpointZ"),
        viewpoint_f=_number(values, "Viewer.ViewpointF"),
    )


def depth_threshold(camera, values):
    """Close/far depth threshold ``bf * ThDepth / fx`` for stereo and RGB-D."""
    if camera.fx == 0:
        raise ValueError("Camera.fx must be non-zero to compute the depth threshold")
    return camera.bf * _number(values, "ThDepth") / camera.fx


def depth_map_factor(values):
    """Multiplier applied to raw depth maps: the inverse of ``DepthMapFactor``, or 1."""
    factor = _number(values, "DepthMapFactor")
    if math.fabs(factor) < 1e-5:
        return 1.0
    return 1.0 / factor