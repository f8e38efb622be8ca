"""Request admission control for the content generation backend."""

__version__ = "0.1.0"
