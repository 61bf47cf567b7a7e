"""imbridge: iMessage ↔ agent pipeline bridge."""

__version__ = "0.1.0"
