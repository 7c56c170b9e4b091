"""Record-Guard: integrity pipeline for structured clinical patient fields."""

__version__ = "1.0.0"
