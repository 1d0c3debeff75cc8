"""kiroo-sync: manga library sync backend."""

__version__ = "0.1.0"
