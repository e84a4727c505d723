"""deeptile - Deep-zoom tile pyramids and viewport rendering for large images."""

__version__ = "0.1.0"
