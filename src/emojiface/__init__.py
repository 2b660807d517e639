"""Face detection with emoji overlays."""

__version__ = "0.1.0"
