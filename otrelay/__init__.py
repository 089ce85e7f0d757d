"""OpenTherm Gateway relay."""

__version__ = "2.0.0"
