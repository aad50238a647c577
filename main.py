#!/usr/bin/env python3
"""
gphoto-webcam - use a gphoto2-compatible camera as a webcam.

Usage:
    python main.py --help
    python main.py start --device 2
    python main.py doctor
"""

import sys

from gphoto_webcam.cli import main


if __name__ == "__main__":
    sys.exit(main())
