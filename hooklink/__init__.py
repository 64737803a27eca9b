"""hooklink: webhook identity resolution and link activation service."""

__version__ = "0.3.0"
