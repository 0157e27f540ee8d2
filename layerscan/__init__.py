"""Layer, ancestry, feature and lock storage for container image scanning."""

__version__ = "0.1.0"