"""
Frame source tests
Sub-frame lifetime, depth back-projection and the capture adapter
"""

import threading

import cv2
import numpy as np
import pytest

from frame_sources import CaptureFrameSource, FrameEvent, PinholeCoordinateMapper, SubFrame
from hsv_segmenter import Config


def test_sub_frame_release_once():
    sub_frame = SubFrame(np.zeros((2, 3), dtype=np.uint16))
    assert (sub_frame.width, sub_frame.height) == (3, 2)

    sub_frame.release()
    assert sub_frame.released
    assert sub_frame.data is None
    with pytest.raises(RuntimeError):
        sub_frame.release()
    assert sub_frame.release_count == 1


def test_event_sub_frames_acquired_once():
    event = FrameEvent(np.zeros((2, 2, 4), dtype=np.uint8), np.zeros((2, 2), dtype=np.uint16))
    color = event.acquire_color_frame()
    depth = event.acquire_depth_frame()
    assert color is not None and depth is not None
    assert event.acquire_color_frame() is None
    assert event.acquire_depth_frame() is None


def test_expired_event_yields_nothing():
    event = FrameEvent(np.zeros((2, 2, 4), dtype=np.uint8), np.zeros((2, 2), dtype=np.uint16))
    event.expire()
    assert event.expired
    assert event.acquire_color_frame() is None
    assert event.acquire_depth_frame() is None


def test_missing_modality_is_unavailable():
    event = FrameEvent(np.zeros((2, 2, 4), dtype=np.uint8), None)
    assert event.acquire_depth_frame() is None
    assert event.acquire_color_frame() is not None


def test_mapper_back_projection():
    mapper = PinholeCoordinateMapper(5, 3, fx=2.0, fy=4.0, cx=2.0, cy=1.0, depth_scale=0.001)
    depth = np.full((3, 5), 2000, dtype=np.uint16)

    points = mapper.map_color_to_camera_space(depth)

    assert points.shape == (15, 3)
    # Principal point lies on the optical axis
    np.testing.assert_allclose(points[1 * 5 + 2], [0.0, 0.0, 2.0])
    # Bottom-right corner: u=4, v=2
    np.testing.assert_allclose(points[2 * 5 + 4], [(4 - 2) * 2.0 / 2.0, (2 - 1) * 2.0 / 4.0, 2.0])
    # Top-left corner: u=0, v=0
    np.testing.assert_allclose(points[0], [-2.0, -0.5, 2.0])


def test_mapper_invalid_depth_maps_to_negative_infinity():
    mapper = PinholeCoordinateMapper(4, 2, fx=1.0, fy=1.0, cx=1.5, cy=0.5)
    depth = np.full((2, 4), 800, dtype=np.uint16)
    depth[0, 1] = 0

    points = mapper.map_color_to_camera_space(depth)

    assert np.all(np.isneginf(points[1]))
    assert np.all(np.isfinite(np.delete(points, 1, axis=0)))


def test_mapper_resizes_depth_to_color_resolution():
    mapper = PinholeCoordinateMapper(8, 6, fx=1.0, fy=1.0, cx=3.5, cy=2.5)
    depth = np.full((3, 4), 1200, dtype=np.uint16)

    points = mapper.map_color_to_camera_space(depth)

    assert points.shape == (48, 3)
    np.testing.assert_allclose(points[:, 2], 1.2, rtol=1e-6)


def test_mapper_fills_buffer_in_place():
    mapper = PinholeCoordinateMapper(4, 2, fx=1.0, fy=1.0, cx=1.5, cy=0.5)
    out = np.zeros((8, 3), dtype=np.float32)

    result = mapper.map_color_to_camera_space(np.full((2, 4), 500, dtype=np.uint16), out=out)

    assert result is out
    np.testing.assert_allclose(out[:, 2], 0.5)


def test_mapper_rejects_bad_buffers():
    mapper = PinholeCoordinateMapper(4, 2)
    with pytest.raises(ValueError):
        mapper.map_color_to_camera_space(np.zeros((2, 4, 1), dtype=np.uint16))
    with pytest.raises(ValueError):
        mapper.map_color_to_camera_space(np.zeros((2, 4), dtype=np.uint16), out=np.zeros((7, 3), dtype=np.float32))


def test_make_event_resizes_and_adds_depth_plane():
    source = CaptureFrameSource("demo.mp4", width=8, height=6, depth_mm=750)
    frame = np.zeros((12, 16, 3), dtype=np.uint8)

    event = source.make_event(frame)

    color = event.acquire_color_frame()
    depth = event.acquire_depth_frame()
    assert color.data.shape == (6, 8, 4)
    assert depth.data.shape == (6, 8)
    assert depth.data.dtype == np.uint16
    assert np.all(depth.data == 750)
    assert source.frames_captured == 1
    assert event.frame_index == 1


def test_publish_expires_oldest_event_when_full():
    source = CaptureFrameSource(0, width=4, height=2, queue_size=2)
    frame = np.zeros((2, 4, 3), dtype=np.uint8)
    first, second, third = (source.make_event(frame) for _ in range(3))

    for event in (first, second, third):
        source.publish(event)

    assert source.frames_dropped == 1
    assert first.expired
    assert first.acquire_color_frame() is None
    assert source.next_event(timeout=0.01) is second
    assert source.next_event(timeout=0.01) is third
    assert source.next_event(timeout=0.01) is None


def test_loop_only_applies_to_files():
    assert CaptureFrameSource("demo.mp4", loop=True).loop
    assert not CaptureFrameSource(0, loop=True).loop


def test_mapper_intrinsics_follow_resolution():
    native = PinholeCoordinateMapper.for_resolution(Config.INTRINSICS_WIDTH, Config.INTRINSICS_HEIGHT)
    assert (native.fx, native.fy, native.cx, native.cy) == (Config.FX, Config.FY, Config.CX, Config.CY)

    doubled = PinholeCoordinateMapper.for_resolution(1280, 960)
    assert (doubled.fx, doubled.fy) == (2 * Config.FX, 2 * Config.FY)
    assert (doubled.cx, doubled.cy) == (639.5, 479.5)

    # Principal point of the doubled frame still maps onto the optical axis
    depth = np.full((3, 4), 1000, dtype=np.uint16)
    points = doubled.map_color_to_camera_space(depth)
    centre = points.reshape(960, 1280, 3)
    np.testing.assert_allclose(centre[479, 639, :2] + centre[480, 640, :2], [0.0, 0.0], atol=1e-6)


class FakeCapture:
    """Stands in for cv2.VideoCapture with a fixed number of frames per pass"""

    def __init__(self, frames, read_limit=None, on_limit=None, gate=None):
        self.frames = frames
        self.position = 0
        self.reads = 0
        self.rewinds = 0
        self.released = False
        self.read_limit = read_limit
        self.on_limit = on_limit
        self.gate = gate
        self.reading = threading.Event()

    def read(self):
        self.reads += 1
        self.reading.set()
        if self.gate is not None:
            self.gate.wait()
        if self.read_limit is not None and self.reads >= self.read_limit:
            self.on_limit()
        if self.position < self.frames:
            self.position += 1
            return True, np.zeros((2, 4, 3), dtype=np.uint8)
        return False, None

    def get(self, prop):
        return 0.0

    def set(self, prop, value):
        if prop == cv2.CAP_PROP_POS_FRAMES:
            self.rewinds += 1
            self.position = int(value)
        return True

    def release(self):
        self.released = True


def test_capture_loop_rewinds_video_files():
    source = CaptureFrameSource("clip.mp4", width=4, height=2, queue_size=100, loop=True)
    fake = FakeCapture(frames=3, read_limit=10, on_limit=source._stop.set)
    source._cap = fake

    source._capture_loop()

    # 3 + 3 + 2 frames around two rewinds
    assert source.frames_captured == 8
    assert fake.rewinds == 2
    assert fake.released
    assert source._cap is None


def test_capture_loop_stops_when_camera_read_fails():
    source = CaptureFrameSource(0, width=4, height=2, queue_size=100, loop=True)
    fake = FakeCapture(frames=2)
    source._cap = fake

    source._capture_loop()

    assert source.frames_captured == 2
    assert fake.reads == 3
    assert fake.rewinds == 0
    assert fake.released


def test_stop_defers_release_while_read_in_progress():
    gate = threading.Event()
    source = CaptureFrameSource(0, width=4, height=2)
    fake = FakeCapture(frames=5, gate=gate)
    source._cap = fake
    source.start()
    assert fake.reading.wait(timeout=1.0)

    source.stop(timeout=0.05)
    assert source.running
    assert not fake.released

    gate.set()
    source._thread.join(timeout=1.0)
    assert not source.running
    assert fake.released
    assert source._cap is None
