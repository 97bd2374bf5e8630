"""Route group exports."""

from . import health, insertion, revisions

__all__ = ["health", "insertion", "revisions"]
