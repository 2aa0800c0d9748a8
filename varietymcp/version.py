"""Version information for varietymcp."""

__version__ = "0.1.0"
