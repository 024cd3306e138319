import numpy as np
import pytest

from slamkit.settings import (
    CameraSettings,
    OrbSettings,
    ViewerSettings,
    camera_from_settings,
    depth_map_factor,
    depth_threshold,
    orb_from_settings,
    read_settings_file,
    viewer_from_settings,
)

SETTINGS_TEXT = """%YAML:1.0
---
Camera.fx: 517.306408
Camera.fy: 516.469215
Camera.cx: 318.643040
Camera.cy: 255.313989
Camera.k1: 0.262383
Camera.k2: -0.953104
Camera.p1: -0.005358
Camera.p2: 0.002628
Camera.k3: 1.163314
Camera.width: 640
Camera.height: 480
Camera.fps: 30.0
Camera.bf: 40.0
Camera.RGB: 1
ThDepth: 40.0
DepthMapFactor: 5000.0
ORBextractor.nFeatures: 1000
ORBextractor.scaleFactor: 1.2
ORBextractor.nLevels: 8
ORBextractor.iniThFAST: 20
ORBextractor.minThFAST: 7
Viewer.ViewpointX: 0
Viewer.ViewpointY: -0.7
Viewer.ViewpointZ: -1.8
Viewer.ViewpointF: 500
Extra.Matrix: !!opencv-matrix
   rows: 2
   cols: 2
   dt: d
   data: [1.0, 2.0, 3.0, 4.0]
"""


@pytest.fixture
def settings_path(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(SETTINGS_TEXT, encoding="utf-8")
    return path


def test_read_settings_file_accepts_header(settings_path):
    values = read_settings_file(settings_path)
    assert values["Camera.fx"] == pytest.approx(517.306408)
    assert values["ORBextractor.nFeatures"] == 1000


def test_read_settings_file_matrix(settings_path):
    values = read_settings_file(settings_path)
    matrix = values["Extra.Matrix"]
    assert matrix.shape == (2, 2)
    assert np.allclose(matrix.reshape(-1), [1.0, 2.0, 3.0, 4.0])


def test_read_settings_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_settings_file(tmp_path / "absent.yaml")


def test_read_settings_not_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        read_settings_file(path)


def test_camera_from_settings(settings_path):
    camera = camera_from_settings(read_settings_file(settings_path))
    assert isinstance(camera, CameraSettings)
    assert camera.rgb is True
    K = camera.K
    assert K[0, 0] == pytest.approx(517.306408)
    assert K[1, 2] == pytest.approx(255.313989)
    assert K[2, 2] == 1.0
    assert camera.dist_coef.shape == (5,)
    assert camera.dist_coef[4] == pytest.approx(1.163314)
    assert camera.max_frames == 30
    assert camera.min_frames == 0


def test_camera_without_k3_has_four_coefficients():
    camera = camera_from_settings({"Camera.fx": 100, "Camera.k1": 0.1, "Camera.k3": 0})
    assert camera.dist_coef.shape == (4,)
    assert camera.dist_coef[0] == pytest.approx(0.1)


def test_camera_zero_fps_defaults_to_thirty():
    camera = camera_from_settings({"Camera.fx": 100})
    assert camera.fps == 30
    assert camera.max_frames == 30
    assert camera.rgb is False


def test_camera_non_numeric_value_raises():
    with pytest.raises(ValueError):
        camera_from_settings({"Camera.fx": "wide"})


def test_orb_from_settings(settings_path):
    orb = orb_from_settings(read_settings_file(settings_path))
    assert isinstance(orb, OrbSettings)
    assert orb.n_features == 1000
    assert orb.n_levels == 8
    assert orb.scale_factor == pytest.approx(1.2)
    assert (orb.ini_th_fast, orb.min_th_fast) == (20, 7)
    assert orb.initial_features == 2 * orb.n_features


def test_viewer_from_settings(settings_path):
    viewer = viewer_from_settings(read_settings_file(settings_path))
    assert isinstance(viewer, ViewerSettings)
    assert (viewer.image_width, viewer.image_height) == (640, 480)
    assert viewer.viewpoint_y == pytest.approx(-0.7)
    assert viewer.viewpoint_f == pytest.approx(500)
    assert viewer.frame_time_ms * viewer.fps == pytest.approx(1e3)


def test_viewer_defaults():
    viewer = viewer_from_settings({"Camera.fps": 0.5, "Camera.width": 1024})
    assert viewer.fps == 30
    assert (viewer.image_width, viewer.image_height) == (640, 480)
    assert viewer.viewpoint_x == 0.0


def test_depth_threshold(settings_path):
    values = read_settings_file(settings_path)
    camera = camera_from_settings(values)
    th = depth_threshold(camera, values)
    assert th * camera.fx == pytest.approx(camera.bf * values["ThDepth"])


def test_depth_threshold_zero_fx():
    camera = camera_from_settings({})
    with pytest.raises(ValueError):
        depth_threshold(camera, {"ThDepth": 40.0})


def test_depth_map_factor(settings_path):
    values = read_settings_file(settings_path)
    assert depth_map_factor(values) * 5000.0 == pytest.approx(1.0)


def test_depth_map_factor_near_zero_is_one():
    assert depth_map_factor({"DepthMapFactor": 0.0}) == 1.0
    assert depth_map_factor({}) == 1.0
    assert depth_map_factor({"DepthMapFactor": 1e-6}) == 1.0