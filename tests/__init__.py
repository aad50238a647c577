"""
gphoto-webcam test suite.

Unit tests for configuration, device provisioning and camera detection, and
integration tests that run the pipeline supervisor against short-lived
Python processes standing in for gphoto2 and ffmpeg.
"""
