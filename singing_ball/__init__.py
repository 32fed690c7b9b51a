"""Bouncing, growing ball inside a ring, rendered with OpenCV and captured to video."""

__version__ = "0.3.0"
