"""sysgit - live system state managed as git branches."""

__version__ = "0.1.0"
