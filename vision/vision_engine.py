"""Level Bar Vision Engine — Main entry point.

Reads raw video frames from stdin (piped from ffmpeg), detects game events
(level loaded, death, restart, exit, clear, game over) and pushes them to
the overlay server via HTTP POST.

Usage:
    ffmpeg -i rtmp://localhost:1935/live/mm2 -vf "fps=10" \
        -pix_fmt bgr24 -vcodec rawvideo -f rawvideo pipe:1 \
        | python vision_engine.py --width 1280 --height 720 \
            --server http://localhost:5124

Args:
    --width: Source frame width (default: 1280)
    --height: Source frame height (default: 720)
    --server: Overlay server base URL
    --templates: Path to marker template directory
    --prep-config: Optional JSON file overriding OCR preprocessing constants
"""

import argparse
import sys
import time

import numpy as np
import pytesseract
from PIL import Image

from detector.event_detector import EventDetector
from detector.event_publisher import EventPublisher
from detector.geometry import Resolution
from detector.ocr_prep import load_prep_config


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Level Bar Vision Engine')
    parser.add_argument('--width', type=int, default=1280,
                        help='Source frame width')
    parser.add_argument('--height', type=int, default=720,
                        help='Source frame height')
    parser.add_argument('--server', default='http://localhost:5124',
                        help='Overlay server URL')
    parser.add_argument('--templates', default='templates',
                        help='Path to marker template directory')
    parser.add_argument('--prep-config', default=None,
                        help='JSON file with OCR preprocessing constants')
    parser.add_argument('--threshold', type=float, default=0.8,
                        help='Minimum template match score')
    parser.add_argument('--cooldown', type=int, default=10,
                        help='Frames before the same event may fire again')
    parser.add_argument('--log-every', type=int, default=100,
                        help='Progress log interval in frames')
    return parser.parse_args(argv)


def tesseract_line(region: np.ndarray) -> str:
    """OCR a single binarized text line."""
    return pytesseract.image_to_string(Image.fromarray(region),
                                       config='--psm 7 --oem 3')


def main():
    args = parse_args()
    capture_res = Resolution(args.width, args.height)
    frame_size = args.width * args.height * 3  # BGR24

    detector = EventDetector(
        args.templates, capture_res,
        ocr=tesseract_line,
        threshold=args.threshold,
        cooldown_frames=args.cooldown,
        prep_config=load_prep_config(args.prep_config),
    )
    publisher = EventPublisher(f'{args.server}/api/events')

    print(f'[Vision] Frame size: {args.width}x{args.height} ({frame_size} bytes)',
          file=sys.stderr)
    print(f'[Vision] Templates loaded: {sorted(detector.templates)}', file=sys.stderr)
    if not detector.has_templates():
        print(f'[Vision] No templates found in {args.templates!r} — nothing will be detected',
              file=sys.stderr)

    frame_count = 0
    start_time = time.time()

    # ── Main loop ──
    while True:
        raw = sys.stdin.buffer.read(frame_size)
        if len(raw) < frame_size:
            print('[Vision] End of input stream', file=sys.stderr)
            break

        frame = np.frombuffer(raw, dtype=np.uint8).reshape(
            (args.height, args.width, 3)
        )
        frame_count += 1

        for event in detector.detect(frame):
            print(f'[Vision] Frame {frame_count}: {event}', file=sys.stderr)
            publisher.publish(event)
        # Drain anything left over from an earlier outage.
        publisher.flush()

        if frame_count % args.log_every == 0:
            elapsed = time.time() - start_time
            fps = frame_count / elapsed if elapsed > 0 else 0
            print(f'[Vision] {frame_count} frames, {fps:.1f} fps, '
                  f'{publisher.sent_count} events sent, {publisher.pending} queued',
                  file=sys.stderr)


if __name__ == '__main__':
    main()
