"""Game update announcement relay for Discord."""

__version__ = "1.0.0"
