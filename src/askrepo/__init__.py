"""askrepo — ask a local model about local files."""

__version__ = "0.1.0"
