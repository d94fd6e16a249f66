"""
Frame sources for the HSV segmentation pipeline.

Frame events pair a BGRA color sub-frame with a 16-bit depth sub-frame.
CaptureFrameSource feeds events from an OpenCV camera or video file on a
background thread; depth comes from a constant plane since a plain capture
device has no depth stream.
"""

import queue
import threading
import time
from typing import Optional, Union

import cv2
import numpy as np

from hsv_segmenter import Config


class SubFrame:
    """One modality of a frame event. Must be released exactly once."""

    def __init__(self, data: np.ndarray):
        self.data = data
        self.release_count = 0

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def released(self) -> bool:
        return self.release_count > 0

    def release(self):
        if self.released:
            raise RuntimeError("Sub-frame released twice")
        self.release_count += 1
        self.data = None


class FrameEvent:
    """
    Frame-arrived notification carrying a color and a depth sub-frame.

    Each sub-frame can be acquired once. After expire() every acquisition
    returns None, like a sensor frame that was recycled before use.
    """

    def __init__(self, color: Optional[np.ndarray], depth: Optional[np.ndarray], frame_index: int = 0):
        self.frame_index = frame_index
        self.timestamp = time.time()
        self._color = SubFrame(color) if color is not None else None
        self._depth = SubFrame(depth) if depth is not None else None
        self._color_taken = False
        self._depth_taken = False
        self._expired = False
        self._lock = threading.Lock()

    @property
    def expired(self) -> bool:
        return self._expired

    def expire(self):
        with self._lock:
            self._expired = True

    def acquire_color_frame(self) -> Optional[SubFrame]:
        with self._lock:
            if self._expired or self._color_taken:
                return None
            self._color_taken = True
            return self._color

    def acquire_depth_frame(self) -> Optional[SubFrame]:
        with self._lock:
            if self._expired or self._depth_taken:
                return None
            self._depth_taken = True
            return self._depth


class PinholeCoordinateMapper:
    """
    Maps every color pixel to a 3-D camera-space point using the depth buffer.

    Depth is resized to the color resolution when the two differ. Pixels
    without depth (0) map to -inf, as sensor SDKs report unmapped points.
    """

    def __init__(self, width: int, height: int, fx: float = Config.FX, fy: float = Config.FY,
                 cx: float = Config.CX, cy: float = Config.CY, depth_scale: float = Config.DEPTH_SCALE):
        self.width = width
        self.height = height
        self.fx = fx
        self.fy = fy
        self.cx = cx
        self.cy = cy
        self.depth_scale = depth_scale

        # Precompute per-pixel ray factors
        u, v = np.meshgrid(np.arange(width, dtype=np.float32), np.arange(height, dtype=np.float32))
        self._x_factor = ((u - cx) / fx).ravel()
        self._y_factor = ((v - cy) / fy).ravel()

    @classmethod
    def for_resolution(cls, width: int, height: int, depth_scale: float = Config.DEPTH_SCALE):
        """Mapper with the configured intrinsics rescaled to another frame size"""
        sx = width / Config.INTRINSICS_WIDTH
        sy = height / Config.INTRINSICS_HEIGHT
        # Pixel centres sit at +0.5, so scale about the image corner
        return cls(width, height,
                   fx=Config.FX * sx, fy=Config.FY * sy,
                   cx=(Config.CX + 0.5) * sx - 0.5, cy=(Config.CY + 0.5) * sy - 0.5,
                   depth_scale=depth_scale)

    @property
    def point_count(self) -> int:
        return self.width * self.height

    def map_color_to_camera_space(self, depth: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Back-project the color frame into camera space.

        Args:
            depth: Depth image in sensor units (uint16 millimetres)
            out: Optional (width*height, 3) float32 buffer filled in place

        Returns:
            (width*height, 3) array of X, Y, Z in metres
        """
        if depth.ndim != 2:
            raise ValueError(f"Expected single-channel depth image, got shape {depth.shape}")

        if out is None:
            out = np.empty((self.point_count, 3), dtype=np.float32)
        elif out.shape != (self.point_count, 3):
            raise ValueError(f"Camera point buffer shape {out.shape} does not match {(self.point_count, 3)}")

        if depth.shape != (self.height, self.width):
            depth = cv2.resize(depth, (self.width, self.height), interpolation=cv2.INTER_NEAREST)

        z = depth.astype(np.float32).ravel() * self.depth_scale
        out[:, 0] = self._x_factor * z
        out[:, 1] = self._y_factor * z
        out[:, 2] = z

        out[z <= 0] = -np.inf
        return out


class CaptureFrameSource:
    """
    Threaded frame capture from a camera index or video file.
    Keeps a small queue of events; when full, the oldest event expires and is
    replaced so the pipeline always sees recent frames.
    """

    def __init__(self, source: Union[int, str], width: int = Config.FRAME_WIDTH,
                 height: int = Config.FRAME_HEIGHT, depth_mm: int = Config.SYNTHETIC_DEPTH_MM,
                 queue_size: int = Config.FRAME_QUEUE_SIZE, loop: bool = Config.LOOP_VIDEO):
        self.source = source
        self.width = width
        self.height = height
        self.depth_mm = depth_mm
        self.loop = loop and isinstance(source, str)
        self.frame_queue: "queue.Queue[FrameEvent]" = queue.Queue(maxsize=queue_size)
        self.frames_captured = 0
        self.frames_dropped = 0

        self._cap: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._cap_lock = threading.Lock()

    def open(self):
        """Open the capture device; raises RuntimeError if unavailable"""
        self._cap = cv2.VideoCapture(self.source)
        if not self._cap.isOpened():
            raise RuntimeError(f"Could not open video source: {self.source}")

        if not isinstance(self.source, str):
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        actual_width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        print(f"Opened video source {self.source}: {actual_width}x{actual_height} "
              f"(resampled to {self.width}x{self.height})")

    def start(self):
        if self._cap is None:
            self.open()
        self._stop.clear()
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()
        print("Threaded frame capture started")

    def stop(self, timeout: float = 1.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                # Still inside read(); the thread releases the device when it exits
                print("Capture thread still busy, deferring release of video source")
                return
        self._release_capture()

    def _release_capture(self):
        with self._cap_lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_event(self, timeout: float = 0.1) -> Optional[FrameEvent]:
        try:
            return self.frame_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def make_event(self, frame_bgr: np.ndarray) -> FrameEvent:
        """Wrap a captured BGR frame and a synthetic depth plane into an event"""
        if frame_bgr.shape[:2] != (self.height, self.width):
            frame_bgr = cv2.resize(frame_bgr, (self.width, self.height))
        color = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2BGRA)
        depth = np.full((self.height, self.width), self.depth_mm, dtype=np.uint16)
        self.frames_captured += 1
        return FrameEvent(color, depth, frame_index=self.frames_captured)

    def publish(self, event: FrameEvent):
        """Queue an event, expiring the oldest queued one if the queue is full"""
        while True:
            try:
                self.frame_queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    stale = self.frame_queue.get_nowait()
                except queue.Empty:
                    continue
                stale.expire()
                self.frames_dropped += 1

    def _capture_loop(self):
        # Play video files at their native rate; cameras pace themselves
        frame_interval = 0.0
        if isinstance(self.source, str):
            fps = self._cap.get(cv2.CAP_PROP_FPS)
            if fps and fps > 0:
                frame_interval = 1.0 / fps

        rewound = False
        try:
            while not self._stop.is_set():
                ret, frame = self._cap.read()

                if not ret:
                    if self.loop and not rewound:
                        self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                        rewound = True
                        continue
                    print("Failed to read frame from video source")
                    break
                rewound = False

                self.publish(self.make_event(frame))

                if frame_interval:
                    time.sleep(frame_interval)
        finally:
            self._release_capture()

        print("Frame capture thread stopped")
