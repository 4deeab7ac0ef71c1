"""Exam media: audio resolution and listening paper assembly."""

__version__ = "0.1.0"
