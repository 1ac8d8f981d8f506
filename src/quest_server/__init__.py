"""Quest task tracking and completion verification service."""

__version__ = "0.1.0"
