"""Field-sales visits backend and offline client."""

__version__ = "1.0.0"
