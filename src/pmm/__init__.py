"""pmm - Polymarket binary market quoting engine."""

__version__ = "0.1.0"
