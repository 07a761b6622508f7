"""Fire / no-fire photo classification with a heuristic fallback."""

__version__ = "0.1.0"
