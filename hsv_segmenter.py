"""
HSV Object Segmentation Pipeline
Live color/depth frame ingestion with operator-tunable HSV thresholding

Single module containing the per-frame acquisition-to-mask pipeline:
frame buffers, color conversion, threshold state, segmentation and session reporting.
"""

import cv2
import numpy as np
import os
import time
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Tuple, Optional, List, Dict, Any, Callable

# =============================================================================
# CONFIGURATION & PARAMETERS
# =============================================================================

class Config:
    """Configuration parameters for HSV segmentation"""

    # Video source configuration
    # Switch between video file and camera based on environment variable or argument
    VIDEO_SOURCE = "demo.mp4"  # Default to demo video
    if os.getenv("USE_CAMERA") == "1":
        VIDEO_SOURCE = 0
    LOOP_VIDEO = True           # Restart video files when they end

    # Color frame dimensions (display bitmap and camera point buffer size)
    FRAME_WIDTH = 640
    FRAME_HEIGHT = 480

    # HSV channel ranges (8-bit OpenCV convention, hue is halved)
    CHANNELS = ("H", "S", "V")
    CHANNEL_MAX = {"H": 179, "S": 255, "V": 255}

    # Default threshold range (blue-ish object)
    DEFAULT_LOWER = {"H": 112, "S": 100, "V": 100}
    DEFAULT_UPPER = {"H": 120, "S": 255, "V": 255}

    # Mask display
    MASK_DISPLAY_SCALE = 0.5
    MASK_INTERPOLATION = cv2.INTER_NEAREST  # keeps the displayed mask binary

    # Pinhole intrinsics for depth/color alignment (640x480 structured-light default)
    FX = 525.0
    FY = 525.0
    CX = 319.5
    CY = 239.5
    INTRINSICS_WIDTH = 640      # resolution the intrinsics above were calibrated at
    INTRINSICS_HEIGHT = 480
    DEPTH_SCALE = 0.001         # depth units (mm) to metres

    # Depth plane used when the capture source has no depth stream
    SYNTHETIC_DEPTH_MM = 1000

    # Frame delivery
    FRAME_QUEUE_SIZE = 2

    # Window names
    COLOR_WINDOW = "Color View"
    MASK_WINDOW = "Thresholded View"
    PICKER_WINDOW = "Color Picker"

    # Debug and visualization
    DEBUG = False
    SHOW_FPS = True
    FPS_WINDOW = 30             # frames per FPS estimate

    # Result logging configuration
    ENABLE_RESULT_LOGGING = True
    LOG_DIRECTORY = "segmentation_results"


class PipelineState(Enum):
    """Stages of one frame traversal"""
    IDLE = "idle"
    FRAME_ACQUIRED = "frame_acquired"
    DEPTH_MAPPED = "depth_mapped"
    COLOR_COPIED = "color_copied"
    SEGMENTED = "segmented"

# =============================================================================
# THRESHOLD STORE
# =============================================================================

@dataclass(frozen=True)
class ThresholdRange:
    """Immutable snapshot of the six HSV bounds"""
    lower_h: int
    upper_h: int
    lower_s: int
    upper_s: int
    lower_v: int
    upper_v: int

    @property
    def lower(self) -> Tuple[int, int, int]:
        return (self.lower_h, self.lower_s, self.lower_v)

    @property
    def upper(self) -> Tuple[int, int, int]:
        return (self.upper_h, self.upper_s, self.upper_v)

    def as_dict(self) -> Dict[str, int]:
        return {
            'lower_h': self.lower_h, 'upper_h': self.upper_h,
            'lower_s': self.lower_s, 'upper_s': self.upper_s,
            'lower_v': self.lower_v, 'upper_v': self.upper_v,
        }


class _ChannelBounds:
    """Lower/upper pair for one channel, guarded by its own lock"""

    __slots__ = ("lower", "upper", "maximum", "lock")

    def __init__(self, lower: int, upper: int, maximum: int):
        self.lower = lower
        self.upper = upper
        self.maximum = maximum
        self.lock = threading.Lock()


class ThresholdStore:
    """
    Concurrently mutable HSV threshold bounds.

    Written by the tuning interface, read by every frame's segmentation step.
    Each channel has its own lock so updates to one channel never contend
    with reads of another. A write that would invert a channel's range is
    ignored and the previous value is kept.
    """

    def __init__(self, lower: Optional[Dict[str, int]] = None,
                 upper: Optional[Dict[str, int]] = None):
        self._defaults_lower = dict(lower or Config.DEFAULT_LOWER)
        self._defaults_upper = dict(upper or Config.DEFAULT_UPPER)
        self._channels: Dict[str, _ChannelBounds] = {}

        for channel in Config.CHANNELS:
            lo = int(self._defaults_lower[channel])
            hi = int(self._defaults_upper[channel])
            maximum = Config.CHANNEL_MAX[channel]
            if not 0 <= lo < hi <= maximum:
                raise ValueError(f"Invalid default range for {channel}: {lo}-{hi} (max {maximum})")
            self._channels[channel] = _ChannelBounds(lo, hi, maximum)

    def get_lower(self, channel: str) -> int:
        bounds = self._channels[channel]
        with bounds.lock:
            return bounds.lower

    def get_upper(self, channel: str) -> int:
        bounds = self._channels[channel]
        with bounds.lock:
            return bounds.upper

    def set_lower(self, channel: str, value: int) -> bool:
        """
        Set the lower bound of a channel.

        Args:
            channel: "H", "S" or "V"
            value: New lower bound

        Returns:
            True if accepted, False if it would not stay below the upper bound
        """
        bounds = self._channels[channel]
        value = int(value)
        with bounds.lock:
            if value < 0 or value > bounds.maximum or value >= bounds.upper:
                return False
            bounds.lower = value
            return True

    def set_upper(self, channel: str, value: int) -> bool:
        """
        Set the upper bound of a channel.

        Args:
            channel: "H", "S" or "V"
            value: New upper bound

        Returns:
            True if accepted, False if it would not stay above the lower bound
        """
        bounds = self._channels[channel]
        value = int(value)
        with bounds.lock:
            if value < 0 or value > bounds.maximum or value <= bounds.lower:
                return False
            bounds.upper = value
            return True

    def snapshot(self) -> ThresholdRange:
        """Read all six bounds, one channel at a time"""
        values = {}
        for channel in Config.CHANNELS:
            bounds = self._channels[channel]
            with bounds.lock:
                values[channel] = (bounds.lower, bounds.upper)

        return ThresholdRange(
            lower_h=values["H"][0], upper_h=values["H"][1],
            lower_s=values["S"][0], upper_s=values["S"][1],
            lower_v=values["V"][0], upper_v=values["V"][1],
        )

    def reset(self):
        """Restore the startup defaults"""
        for channel, bounds in self._channels.items():
            with bounds.lock:
                bounds.lower = int(self._defaults_lower[channel])
                bounds.upper = int(self._defaults_upper[channel])

# =============================================================================
# DISPLAY BITMAP
# =============================================================================

Region = Tuple[int, int, int, int]  # x, y, w, h


class DisplayBitmap:
    """
    Double-buffered BGRA display surface.

    Writers fill the back buffer inside an exclusive-write window; dirty
    regions are published to the front buffer when the window is released.
    Readers copy the front buffer under the same lock, so a read never
    overlaps a write.
    """

    def __init__(self, width: int, height: int, channels: int = 4):
        self.width = width
        self.height = height
        self.channels = channels
        self._back = np.zeros((height, width, channels), dtype=np.uint8)
        self._front = np.zeros((height, width, channels), dtype=np.uint8)
        self._lock = threading.Lock()
        self._dirty: List[Region] = []
        self._writing = False

    @property
    def full_region(self) -> Region:
        return (0, 0, self.width, self.height)

    @property
    def is_locked(self) -> bool:
        return self._writing

    def acquire_exclusive_write(self):
        self._lock.acquire()
        self._writing = True

    def release_exclusive_write(self):
        if not self._writing:
            raise RuntimeError("Display bitmap released without exclusive write access")

        # Publish dirty regions to the front buffer
        for x, y, w, h in self._dirty:
            self._front[y:y+h, x:x+w] = self._back[y:y+h, x:x+w]
        self._dirty.clear()

        self._writing = False
        self._lock.release()

    @contextmanager
    def exclusive_write(self):
        """Scope guard for the exclusive-write window"""
        self.acquire_exclusive_write()
        try:
            yield self
        finally:
            self.release_exclusive_write()

    def write(self, region: Region, pixels: np.ndarray):
        """Copy pixels into the back buffer; only valid inside the write window"""
        if not self._writing:
            raise RuntimeError("Display bitmap written without exclusive write access")

        x, y, w, h = self._check_region(region)
        expected = (h, w, self.channels)
        if pixels.shape != expected:
            raise ValueError(f"Pixel buffer shape {pixels.shape} does not match region {expected}")

        self._back[y:y+h, x:x+w] = pixels

    def mark_dirty(self, region: Region):
        if not self._writing:
            raise RuntimeError("Display bitmap marked dirty without exclusive write access")
        self._dirty.append(self._check_region(region))

    def read(self) -> np.ndarray:
        """Copy of the published contents"""
        with self._lock:
            return self._front.copy()

    def _check_region(self, region: Region) -> Region:
        x, y, w, h = (int(v) for v in region)
        if x < 0 or y < 0 or w < 0 or h < 0 or x + w > self.width or y + h > self.height:
            raise ValueError(f"Region {region} outside {self.width}x{self.height} bitmap")
        return (x, y, w, h)

# =============================================================================
# COLOR SPACE CONVERSION
# =============================================================================

def convert_to_hsv(image: np.ndarray, expected_size: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """
    Convert a BGRA (or BGR) frame into HSV.

    Args:
        image: HxWx4 BGRA or HxWx3 BGR uint8 buffer
        expected_size: Optional (height, width) the buffer must have

    Returns:
        HxWx3 HSV buffer (H in [0, 179], S and V in [0, 255])
    """
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected HxWx3 or HxWx4 color buffer, got shape {image.shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 color buffer, got {image.dtype}")
    if expected_size is not None and image.shape[:2] != tuple(expected_size):
        raise ValueError(f"Color buffer size {image.shape[:2]} does not match expected {tuple(expected_size)}")

    height, width = image.shape[:2]
    if height == 0 or width == 0:
        return np.zeros((height, width, 3), dtype=np.uint8)

    if image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    return cv2.cvtColor(image, cv2.COLOR_BGR2HSV)

# =============================================================================
# SEGMENTATION ENGINE
# =============================================================================

@dataclass
class SegmentationResult:
    """Output of one segmented frame"""
    display_mask: np.ndarray
    foreground_pixels: int
    total_pixels: int
    thresholds: ThresholdRange
    frame_index: int = 0

    @property
    def foreground_ratio(self) -> float:
        if self.total_pixels == 0:
            return 0.0
        return self.foreground_pixels / self.total_pixels


class SegmentationEngine:
    """Applies the current threshold range to HSV frames"""

    def __init__(self, store: ThresholdStore, scale: float = Config.MASK_DISPLAY_SCALE,
                 interpolation: int = Config.MASK_INTERPOLATION):
        self.store = store
        self.scale = scale
        self.interpolation = interpolation

    def compute_mask(self, hsv_frame: np.ndarray, thresholds: ThresholdRange) -> np.ndarray:
        """
        Create binary mask of pixels inside the inclusive HSV range.

        Args:
            hsv_frame: HxWx3 HSV frame
            thresholds: Bounds snapshot to apply

        Returns:
            HxW mask with foreground pixels as white (255)
        """
        if hsv_frame.ndim != 3 or hsv_frame.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 HSV buffer, got shape {hsv_frame.shape}")

        height, width = hsv_frame.shape[:2]
        if height == 0 or width == 0:
            return np.zeros((height, width), dtype=np.uint8)

        lower = np.array(thresholds.lower, dtype=np.uint8)
        upper = np.array(thresholds.upper, dtype=np.uint8)
        return cv2.inRange(hsv_frame, lower, upper)

    def downscale(self, mask: np.ndarray) -> np.ndarray:
        """Reduced-resolution copy of the mask for display"""
        height, width = mask.shape[:2]
        out_w = int(width * self.scale)
        out_h = int(height * self.scale)
        if out_w == 0 or out_h == 0:
            return np.zeros((out_h, out_w), dtype=np.uint8)
        return cv2.resize(mask, (out_w, out_h), interpolation=self.interpolation)

    def segment(self, hsv_frame: np.ndarray, frame_index: int = 0) -> SegmentationResult:
        thresholds = self.store.snapshot()
        mask = self.compute_mask(hsv_frame, thresholds)

        return SegmentationResult(
            display_mask=self.downscale(mask),
            foreground_pixels=int(cv2.countNonZero(mask)) if mask.size else 0,
            total_pixels=int(mask.size),
            thresholds=thresholds,
            frame_index=frame_index,
        )

# =============================================================================
# SESSION REPORT
# =============================================================================

class SessionReport:
    """
    Result logging for segmentation sessions.
    Collects per-frame data and counters, and writes human-readable reports.
    """

    def __init__(self, video_source: str, log_directory: Optional[str] = None,
                 enabled: Optional[bool] = None):
        self.video_source = video_source
        self.log_directory = log_directory or Config.LOG_DIRECTORY
        self.enabled = Config.ENABLE_RESULT_LOGGING if enabled is None else enabled
        self.session_start = datetime.now()
        self.frame_data: List[Dict[str, Any]] = []
        self.session_stats = {
            'frames_received': 0,
            'frames_segmented': 0,
            'frames_abandoned': 0,
            'frames_skipped': 0,
            'threshold_updates_accepted': 0,
            'threshold_updates_rejected': 0,
            'avg_fps': 0,
            'processing_time': 0
        }
        self._lock = threading.Lock()

    def log_frame_received(self):
        with self._lock:
            self.session_stats['frames_received'] += 1

    def log_frame_abandoned(self):
        with self._lock:
            self.session_stats['frames_abandoned'] += 1

    def log_frame_skipped(self):
        with self._lock:
            self.session_stats['frames_skipped'] += 1

    def log_frame(self, result: SegmentationResult, fps: float):
        """Log data for a single segmented frame"""
        with self._lock:
            self.session_stats['frames_segmented'] += 1
            if not self.enabled:
                return
            self.frame_data.append({
                'frame': result.frame_index,
                'timestamp': time.time(),
                'foreground_pixels': result.foreground_pixels,
                'foreground_ratio': round(result.foreground_ratio, 6),
                'thresholds': result.thresholds.as_dict(),
                'fps': fps
            })

    def log_threshold_update(self, channel: str, bound: str, value: int, accepted: bool):
        with self._lock:
            key = 'threshold_updates_accepted' if accepted else 'threshold_updates_rejected'
            self.session_stats[key] += 1

        if Config.DEBUG:
            status = "accepted" if accepted else "rejected"
            print(f"Threshold {bound} {channel} -> {value} ({status})")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self.session_stats)

    def finalize_session(self, final_fps: float, thresholds: Optional[ThresholdRange] = None) -> List[str]:
        """
        Finalize the logging session and generate reports.

        Returns:
            Paths of the written report files (empty when logging is disabled)
        """
        if not self.enabled:
            return []

        with self._lock:
            self.session_stats['avg_fps'] = final_fps
            self.session_stats['processing_time'] = (datetime.now() - self.session_start).total_seconds()

        os.makedirs(self.log_directory, exist_ok=True)
        paths = [
            self._generate_summary_report(thresholds),
            self._generate_detailed_report(),
            self._generate_json_report(thresholds),
        ]

        print(f"\nSegmentation results saved to: {self.log_directory}/")
        return paths

    def _report_path(self, suffix: str) -> str:
        timestamp = self.session_start.strftime("%Y%m%d_%H%M%S")
        return os.path.join(self.log_directory, f"{timestamp}_{suffix}")

    def _generate_summary_report(self, thresholds: Optional[ThresholdRange]) -> str:
        """Generate a human-readable summary report"""
        filename = self._report_path("segmentation_summary.txt")
        stats = self.stats()

        with open(filename, 'w') as f:
            f.write("=" * 60 + "\n")
            f.write("HSV SEGMENTATION SESSION SUMMARY\n")
            f.write("=" * 60 + "\n\n")

            f.write(f"Session Start: {self.session_start.strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Video Source: {self.video_source}\n")
            f.write(f"Processing Time: {stats['processing_time']:.2f} seconds\n")
            f.write(f"Average FPS: {stats['avg_fps']:.1f}\n\n")

            f.write("FRAME STATISTICS:\n")
            f.write("-" * 20 + "\n")
            f.write(f"Frames Received: {stats['frames_received']}\n")
            f.write(f"Frames Segmented: {stats['frames_segmented']}\n")
            f.write(f"Frames Abandoned: {stats['frames_abandoned']}\n")
            f.write(f"Frames Skipped (busy): {stats['frames_skipped']}\n")

            if stats['frames_received'] > 0:
                segmented_rate = (stats['frames_segmented'] / stats['frames_received']) * 100
                f.write(f"Segmentation Rate: {segmented_rate:.1f}%\n")

            if self.frame_data:
                ratios = [d['foreground_ratio'] for d in self.frame_data]
                f.write(f"Mean Foreground Ratio: {np.mean(ratios) * 100:.2f}%\n")
            f.write("\n")

            f.write("THRESHOLD TUNING:\n")
            f.write("-" * 17 + "\n")
            f.write(f"Updates Accepted: {stats['threshold_updates_accepted']}\n")
            f.write(f"Updates Rejected: {stats['threshold_updates_rejected']}\n")
            if thresholds is not None:
                f.write(f"Final Range: H {thresholds.lower_h}-{thresholds.upper_h}, "
                        f"S {thresholds.lower_s}-{thresholds.upper_s}, "
                        f"V {thresholds.lower_v}-{thresholds.upper_v}\n")
            f.write("\n")

            f.write("CONFIGURATION USED:\n")
            f.write("-" * 19 + "\n")
            f.write(f"Frame Size: {Config.FRAME_WIDTH}x{Config.FRAME_HEIGHT}\n")
            f.write(f"Mask Display Scale: {Config.MASK_DISPLAY_SCALE}\n")
            f.write(f"Intrinsics: fx={Config.FX} fy={Config.FY} cx={Config.CX} cy={Config.CY}\n")

        print(f"Summary report saved: {filename}")
        return filename

    def _generate_detailed_report(self) -> str:
        """Generate a detailed frame-by-frame report"""
        filename = self._report_path("segmentation_detailed.txt")

        with open(filename, 'w') as f:
            f.write("=" * 80 + "\n")
            f.write("DETAILED FRAME-BY-FRAME SEGMENTATION REPORT\n")
            f.write("=" * 80 + "\n\n")

            f.write("Format: Frame | Foreground px | Ratio | H range | S range | V range | FPS\n")
            f.write("-" * 80 + "\n")

            for data in self.frame_data:
                t = data['thresholds']
                f.write(f"{data['frame']:6d} | {data['foreground_pixels']:8d} | "
                        f"{data['foreground_ratio'] * 100:6.2f}% | "
                        f"{t['lower_h']:3d}-{t['upper_h']:3d} | "
                        f"{t['lower_s']:3d}-{t['upper_s']:3d} | "
                        f"{t['lower_v']:3d}-{t['upper_v']:3d} | {data['fps']:5.1f}\n")

        print(f"Detailed report saved: {filename}")
        return filename

    def _generate_json_report(self, thresholds: Optional[ThresholdRange]) -> str:
        """Generate a machine-readable JSON report"""
        filename = self._report_path("segmentation_data.json")

        report_data = {
            'session_info': {
                'start_time': self.session_start.isoformat(),
                'video_source': self.video_source,
            },
            'statistics': self.stats(),
            'final_thresholds': thresholds.as_dict() if thresholds is not None else None,
            'configuration': {
                'frame_width': Config.FRAME_WIDTH,
                'frame_height': Config.FRAME_HEIGHT,
                'mask_display_scale': Config.MASK_DISPLAY_SCALE,
                'fx': Config.FX,
                'fy': Config.FY,
                'cx': Config.CX,
                'cy': Config.CY,
            },
            'frame_data': self.frame_data
        }

        with open(filename, 'w') as f:
            json.dump(report_data, f, indent=2)

        print(f"JSON data saved: {filename}")
        return filename

# =============================================================================
# FRAME BUFFER MANAGER
# =============================================================================

class FrameBufferManager:
    """
    Owns the display bitmap and the camera point buffer.

    Every sub-frame acquired from an event is released exactly once,
    whether the frame completes, is abandoned or raises.
    """

    def __init__(self, width: int, height: int, mapper, bitmap: Optional[DisplayBitmap] = None):
        self.width = width
        self.height = height
        self.mapper = mapper
        self.bitmap = bitmap or DisplayBitmap(width, height)
        self.camera_points = np.full((width * height, 3), -np.inf, dtype=np.float32)

        if (self.bitmap.width, self.bitmap.height) != (width, height):
            raise ValueError("Display bitmap size does not match frame buffer size")

    def ingest(self, event, advance: Callable[[PipelineState], None] = lambda state: None) -> bool:
        """
        Map depth and copy color for one frame event.

        Args:
            event: Frame event exposing acquire_depth_frame / acquire_color_frame
            advance: Called with each pipeline state reached

        Returns:
            True if the frame was fully ingested, False if it was abandoned
        """
        depth_frame = None
        color_frame = None

        try:
            depth_frame = event.acquire_depth_frame()
            color_frame = event.acquire_color_frame()

            # Either sub-frame expired before we got to it
            if depth_frame is None or color_frame is None:
                return False
            advance(PipelineState.FRAME_ACQUIRED)

            self.mapper.map_color_to_camera_space(depth_frame.data, out=self.camera_points)
            depth_frame.release()
            depth_frame = None
            advance(PipelineState.DEPTH_MAPPED)

            with self.bitmap.exclusive_write() as bitmap:
                bitmap.write(bitmap.full_region, color_frame.data)
                color_frame.release()
                color_frame = None
                bitmap.mark_dirty(bitmap.full_region)
            advance(PipelineState.COLOR_COPIED)

            return True
        finally:
            if depth_frame is not None:
                depth_frame.release()
            if color_frame is not None:
                color_frame.release()

# =============================================================================
# FRAME PIPELINE
# =============================================================================

class FramePipeline:
    """
    Runs one acquisition-to-mask traversal per frame event.

    Traversals run to completion; an event delivered while another traversal
    is in progress is dropped without touching the shared buffers.
    """

    def __init__(self, buffers: FrameBufferManager, engine: SegmentationEngine,
                 mask_sink: Optional[Callable[[np.ndarray], None]] = None,
                 report: Optional[SessionReport] = None):
        self.buffers = buffers
        self.engine = engine
        self.mask_sink = mask_sink
        self.report = report
        self.state = PipelineState.IDLE
        self.frame_count = 0
        self.last_result: Optional[SegmentationResult] = None
        self._traversal_lock = threading.Lock()

        # FPS calculation
        self.fps_start_time = time.time()
        self.fps_frame_count = 0
        self.current_fps = 0.0

    def on_frame_arrived(self, event) -> Optional[SegmentationResult]:
        """
        Process a single frame event.

        Args:
            event: Frame event from the frame source

        Returns:
            Segmentation result, or None if the frame was abandoned or skipped
        """
        if self.report:
            self.report.log_frame_received()

        if not self._traversal_lock.acquire(blocking=False):
            if self.report:
                self.report.log_frame_skipped()
            return None

        try:
            return self._traverse(event)
        finally:
            self.state = PipelineState.IDLE
            self._traversal_lock.release()

    def _advance(self, state: PipelineState):
        self.state = state

    def _traverse(self, event) -> Optional[SegmentationResult]:
        # Step 1-3: Acquire sub-frames, map depth, copy color
        if not self.buffers.ingest(event, self._advance):
            if self.report:
                self.report.log_frame_abandoned()
            return None

        # Step 4: Convert published bitmap contents to HSV
        bitmap = self.buffers.bitmap
        hsv_frame = convert_to_hsv(bitmap.read(), expected_size=(bitmap.height, bitmap.width))

        # Step 5: Threshold and downscale
        self.frame_count += 1
        result = self.engine.segment(hsv_frame, frame_index=self.frame_count)
        self._advance(PipelineState.SEGMENTED)
        self.last_result = result

        self._update_fps()

        # Step 6: Hand the mask to the presenter
        if self.mask_sink is not None:
            self.mask_sink(result.display_mask)

        if self.report:
            self.report.log_frame(result, self.current_fps)

        return result

    def _update_fps(self):
        self.fps_frame_count += 1
        if self.fps_frame_count >= Config.FPS_WINDOW:
            now = time.time()
            elapsed = now - self.fps_start_time
            if elapsed > 0:
                self.current_fps = self.fps_frame_count / elapsed
            self.fps_start_time = now
            self.fps_frame_count = 0
