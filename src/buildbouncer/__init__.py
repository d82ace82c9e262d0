"""build-bouncer - runs your checks before git lets a push through."""

__version__ = "0.1.0"
