"""
Create demo videos for tuning the HSV segmentation pipeline.
A blue target moves over a gray background alongside distractors of other hues,
so the default hue window (112-120) isolates it while the others can be tuned in.
"""

import cv2
import numpy as np
import math
import random

from hsv_segmenter import Config


def open_writer(filename, fps, width, height):
    """Open a VideoWriter, falling back from XVID to mp4v"""
    fourcc = cv2.VideoWriter_fourcc(*'XVID')
    out = cv2.VideoWriter(filename, fourcc, fps, (width, height))

    if not out.isOpened():
        print("Warning: Could not open video writer with XVID, trying mp4v...")
        fourcc = cv2.VideoWriter_fourcc(*'mp4v')
        out = cv2.VideoWriter(filename, fourcc, fps, (width, height))

    return out


def render_frame(t, width, height, distractors):
    """
    Render a single demo frame.

    Args:
        t: Time in seconds
        width: Frame width
        height: Frame height
        distractors: List of (x, y, radius, bgr) circles

    Returns:
        BGR frame
    """
    # Gray gradient background: achromatic, so it never enters a hue window
    gradient = np.linspace(40, 160, width, dtype=np.uint8)
    frame = np.repeat(np.tile(gradient, (height, 1))[:, :, None], 3, axis=2)

    for x, y, radius, color in distractors:
        cv2.circle(frame, (x, y), radius, color, -1)

    # Target on an elliptical orbit, slowly dimming to exercise the V bound
    angle = 2 * math.pi * t / 6
    target_x = int(width / 2 + width * 0.3 * math.cos(angle))
    target_y = int(height / 2 + height * 0.25 * math.sin(angle))
    brightness = int(180 + 75 * math.cos(2 * math.pi * t / 10))
    cv2.circle(frame, (target_x, target_y), 30, (brightness, 0, 0), -1)

    cv2.putText(frame, f"Time: {t:.1f}s", (10, 25),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)
    return frame


def create_demo_video(filename="demo.mp4", duration=20, fps=30,
                      width=Config.FRAME_WIDTH, height=Config.FRAME_HEIGHT, seed=7):
    """Create the tuning demo video"""
    out = open_writer(filename, fps, width, height)
    if not out.isOpened():
        print("Error: Could not initialize video writer")
        return False

    random.seed(seed)
    hues = [(0, 0, 255), (0, 255, 0), (0, 255, 255), (255, 0, 255), (255, 128, 0)]
    distractors = [
        (random.randint(40, width - 40), random.randint(40, height - 40),
         random.randint(12, 28), random.choice(hues))
        for _ in range(8)
    ]

    total_frames = duration * fps
    print(f"Creating demo video: {filename}")
    print(f"Duration: {duration}s, FPS: {fps}, Total frames: {total_frames}")
    print(f"Resolution: {width}x{height}")

    for frame_num in range(total_frames):
        out.write(render_frame(frame_num / fps, width, height, distractors))

        if frame_num % max(1, total_frames // 10) == 0:
            print(f"Progress: {(frame_num / total_frames) * 100:.1f}%")

    out.release()
    print(f"Demo video created successfully: {filename}")
    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Create demo video for HSV tuning')
    parser.add_argument('--output', type=str, default='demo.mp4', help='Output filename')
    parser.add_argument('--duration', type=int, default=20, help='Video duration in seconds')
    parser.add_argument('--fps', type=int, default=30, help='Frames per second')

    args = parser.parse_args()

    if create_demo_video(args.output, args.duration, args.fps):
        print("\nRecommended commands:")
        print(f"  Tune:        python main_desktop.py --source {args.output}")
        print("  Performance: python performance_test.py")


if __name__ == "__main__":
    main()
