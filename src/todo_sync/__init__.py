"""Task sync between dated Markdown notes and Microsoft To Do."""

__version__ = "0.4.0"
