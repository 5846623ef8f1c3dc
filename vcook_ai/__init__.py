"""Vietnamese ingredient translation cache and recipe nutrition engine."""

__version__ = "0.1.0"
