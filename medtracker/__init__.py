"""MedTracker timezone-aware dose scheduling engine."""

__version__ = "0.3.0"
