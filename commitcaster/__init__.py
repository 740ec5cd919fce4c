"""commitcaster — turn pushed commits into social posts."""

__version__ = "1.0.0"
