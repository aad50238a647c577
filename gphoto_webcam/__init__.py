"""
gphoto-webcam - tethered camera as a virtual webcam

Provisions a v4l2loopback device, pipes gphoto2 live view into ffmpeg and
supervises the resulting pipeline until it exits or fails.
"""

__version__ = "0.1.0"
__author__ = "gphoto-webcam contributors"
