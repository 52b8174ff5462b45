"""GTD-Buddy: personal GTD task management tool server."""

__version__ = "1.0.0"
