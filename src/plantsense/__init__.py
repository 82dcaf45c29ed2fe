"""PlantSense: plant health diagnosis from uploaded or live-captured images."""

__version__ = "0.1.0"
