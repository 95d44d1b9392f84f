"""Cross-posting gateway core: capability-verified multi-platform actions."""

__version__ = "0.1.0"
