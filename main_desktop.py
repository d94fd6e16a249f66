#!/usr/bin/env python3
"""
Desktop HSV Tuner
Live color view, thresholded mask and a trackbar color picker on top of the segmentation pipeline
"""

import argparse
import threading
import time
from functools import partial
from typing import Optional

import cv2
import numpy as np

from frame_sources import CaptureFrameSource, PinholeCoordinateMapper
from hsv_segmenter import (
    Config, DisplayBitmap, FrameBufferManager, FramePipeline,
    SegmentationEngine, SessionReport, ThresholdStore,
)


class LatestMask:
    """Mask display sink: keeps the most recent mask for the GUI thread"""

    def __init__(self):
        self._lock = threading.Lock()
        self._mask: Optional[np.ndarray] = None
        self.updates = 0

    def __call__(self, mask: np.ndarray):
        with self._lock:
            self._mask = mask
            self.updates += 1

    def get(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._mask


class TuningPanel:
    """
    Six trackbars bound to the threshold store.

    Each trackbar calls an explicit handler with the store it controls.
    A rejected write snaps the trackbar back to the stored value.
    """

    TRACKBARS = [
        ("lower H", "H", "lower"),
        ("upper H", "H", "upper"),
        ("lower S", "S", "lower"),
        ("upper S", "S", "upper"),
        ("lower V", "V", "lower"),
        ("upper V", "V", "upper"),
    ]

    def __init__(self, store: ThresholdStore, report: Optional[SessionReport] = None,
                 window_name: str = Config.PICKER_WINDOW):
        self.store = store
        self.report = report
        self.window_name = window_name
        self.attached = False

    @staticmethod
    def trackbar_name(channel: str, bound: str) -> str:
        return f"{bound} {channel}"

    def attach(self):
        """Create the picker window and its trackbars"""
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
        for name, channel, bound in self.TRACKBARS:
            handler = self.on_lower if bound == "lower" else self.on_upper
            cv2.createTrackbar(name, self.window_name, self._stored(channel, bound),
                               Config.CHANNEL_MAX[channel], partial(handler, channel))
        self.attached = True

    def on_lower(self, channel: str, value: int) -> bool:
        return self._apply(channel, "lower", value, self.store.set_lower)

    def on_upper(self, channel: str, value: int) -> bool:
        return self._apply(channel, "upper", value, self.store.set_upper)

    def sync(self):
        """Move every trackbar to the value held by the store"""
        if not self.attached:
            return
        for name, channel, bound in self.TRACKBARS:
            cv2.setTrackbarPos(name, self.window_name, self._stored(channel, bound))

    def _stored(self, channel: str, bound: str) -> int:
        if bound == "lower":
            return self.store.get_lower(channel)
        return self.store.get_upper(channel)

    def _apply(self, channel: str, bound: str, value: int, setter) -> bool:
        # Trackbar echo after a snap-back
        if value == self._stored(channel, bound):
            return True

        accepted = setter(channel, value)
        if self.report:
            self.report.log_threshold_update(channel, bound, value, accepted)

        if not accepted and self.attached:
            cv2.setTrackbarPos(self.trackbar_name(channel, bound), self.window_name,
                               self._stored(channel, bound))
        return accepted


def pipeline_worker(source: CaptureFrameSource, pipeline: FramePipeline, stop_event: threading.Event):
    """
    Background thread delivering frame events to the pipeline one at a time
    """
    print("Starting pipeline worker thread...")
    while not stop_event.is_set():
        event = source.next_event(timeout=0.05)
        if event is None:
            if not source.running:
                break
            continue
        pipeline.on_frame_arrived(event)

    print("Pipeline worker thread stopped")


def parse_source(value: str):
    """Camera index if numeric, otherwise a file path"""
    return int(value) if value.isdigit() else value


def print_thresholds(store: ThresholdStore):
    t = store.snapshot()
    print(f"Current range: lower=({t.lower_h}, {t.lower_s}, {t.lower_v}) "
          f"upper=({t.upper_h}, {t.upper_s}, {t.upper_v})")


def main():
    """
    Main application loop for desktop HSV tuning
    """
    parser = argparse.ArgumentParser(description='Live HSV threshold tuner for color+depth streams')
    parser.add_argument('--source', type=str, help='Video source (file path or camera index)')
    parser.add_argument('--camera', action='store_true', help='Use camera 0 instead of video file')
    parser.add_argument('--width', type=int, default=Config.FRAME_WIDTH, help='Color frame width')
    parser.add_argument('--height', type=int, default=Config.FRAME_HEIGHT, help='Color frame height')
    parser.add_argument('--depth-mm', type=int, default=Config.SYNTHETIC_DEPTH_MM,
                        help='Constant depth plane for sources without depth')
    parser.add_argument('--debug', action='store_true', help='Print every threshold update')
    parser.add_argument('--no-logging', action='store_true', help='Disable result logging')
    args = parser.parse_args()

    if args.source:
        Config.VIDEO_SOURCE = parse_source(args.source)
    elif args.camera:
        Config.VIDEO_SOURCE = 0
    if args.debug:
        Config.DEBUG = True
    if args.no_logging:
        Config.ENABLE_RESULT_LOGGING = False
    Config.FRAME_WIDTH = args.width
    Config.FRAME_HEIGHT = args.height

    print("=" * 60)
    print("HSV SEGMENTATION TUNER")
    print("=" * 60)

    # Step 1: Open frame source
    source = CaptureFrameSource(Config.VIDEO_SOURCE, args.width, args.height, depth_mm=args.depth_mm)
    try:
        source.open()
    except RuntimeError as e:
        print(f"Failed to open video source: {e}")
        print("Troubleshooting:")
        print("  - Run create_demo_video.py to generate demo.mp4")
        print("  - Or pass --camera / --source <index> for a live camera")
        return

    # Step 2: Build pipeline components
    store = ThresholdStore()
    report = SessionReport(str(Config.VIDEO_SOURCE))
    mapper = PinholeCoordinateMapper.for_resolution(args.width, args.height)
    buffers = FrameBufferManager(args.width, args.height, mapper, DisplayBitmap(args.width, args.height))
    engine = SegmentationEngine(store)
    mask_sink = LatestMask()
    pipeline = FramePipeline(buffers, engine, mask_sink=mask_sink, report=report)

    # Step 3: Create windows and trackbars
    cv2.namedWindow(Config.COLOR_WINDOW, cv2.WINDOW_NORMAL)
    cv2.resizeWindow(Config.COLOR_WINDOW, args.width // 2, args.height // 2)
    cv2.namedWindow(Config.MASK_WINDOW, cv2.WINDOW_NORMAL)
    panel = TuningPanel(store, report)
    panel.attach()

    print(f"Source: {Config.VIDEO_SOURCE}")
    print(f"Frame size: {args.width}x{args.height}")
    print_thresholds(store)
    print(f"Result logging: {'ON' if Config.ENABLE_RESULT_LOGGING else 'OFF'}")
    print("\nControls:")
    print("  'q' - Quit application")
    print("  'p' - Print current threshold range")
    print("  'r' - Reset thresholds to defaults")

    # Step 4: Start capture and pipeline threads
    stop_event = threading.Event()
    source.start()
    worker = threading.Thread(target=pipeline_worker, args=(source, pipeline, stop_event), daemon=True)
    worker.start()

    start_time = time.time()
    last_fps_print = time.time()
    last_mask_updates = 0

    try:
        # Step 5: GUI loop (presenter reads and trackbar callbacks)
        while worker.is_alive():
            color = buffers.bitmap.read()
            cv2.imshow(Config.COLOR_WINDOW, cv2.cvtColor(color, cv2.COLOR_BGRA2BGR))

            mask = mask_sink.get()
            if mask is not None and mask_sink.updates != last_mask_updates:
                cv2.imshow(Config.MASK_WINDOW, mask)
                last_mask_updates = mask_sink.updates

            if Config.SHOW_FPS and time.time() - last_fps_print >= 5.0:
                print(f"Performance: {pipeline.current_fps:.1f} FPS, Frame {pipeline.frame_count}")
                last_fps_print = time.time()

            key = cv2.waitKey(10) & 0xFF
            if key == ord('q'):
                print("Quit requested by user")
                break
            elif key == ord('p'):
                print_thresholds(store)
            elif key == ord('r'):
                store.reset()
                panel.sync()
                print("Thresholds reset to defaults")
                print_thresholds(store)

    except KeyboardInterrupt:
        print("\nInterrupted by user (Ctrl+C)")

    finally:
        # Step 6: Cleanup
        print("Shutting down HSV tuner...")
        stop_event.set()
        worker.join(timeout=1.0)
        source.stop()

        total_time = time.time() - start_time
        final_fps = pipeline.frame_count / total_time if total_time > 0 else 0
        stats = report.stats()
        print("Session Statistics:")
        print(f"  Frames segmented: {stats['frames_segmented']}")
        print(f"  Frames abandoned: {stats['frames_abandoned']}")
        print(f"  Frames dropped by capture: {source.frames_dropped}")
        print(f"  Average FPS: {final_fps:.1f}")
        print_thresholds(store)

        report.finalize_session(final_fps, store.snapshot())
        cv2.destroyAllWindows()
        print("HSV tuner stopped. Goodbye!")


if __name__ == "__main__":
    main()
